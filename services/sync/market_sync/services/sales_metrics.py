"""Sales metrics: outlier back-fill and rolling-window statistics.

Per (sku, size_key, currency, marketplace) over included sales:
- median price and sample count for 72h / 7d / 30d / 90d windows
- 90d min/max, volatility (population stdev / mean), outlier ratio
- liquidity score (0-100): volume per window + recency of the last sale
- confidence score (0-100): sample size, volatility, outlier ratio

All prices are integer minor units.
"""

import logging
import statistics
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from market_sync.services.sales_ingestion import is_included
from market_sync.services.types import SaleFlagUpdate, SaleRecord, SalesMetricRecord, utcnow
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")

WINDOWS: dict[str, timedelta] = {
    "72h": timedelta(hours=72),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
METRICS_LOOKBACK = WINDOWS["90d"]

# Outliers: modified z-score on median absolute deviation
OUTLIER_MIN_SAMPLES = 5
OUTLIER_Z_THRESHOLD = 3.5
OUTLIER_ABOVE = "price_above_range"
OUTLIER_BELOW = "price_below_range"

# Confidence: full marks at these levels
CONFIDENCE_FULL_SAMPLES = 30
CONFIDENCE_MAX_VOLATILITY = 0.5
CONFIDENCE_MAX_OUTLIER_RATIO = 0.2

GroupKey = tuple[str, str, str, str]


def median(values: list[float]) -> float | None:
    if not values:
        return None
    return float(statistics.median(values))


def coefficient_of_variation(values: list[float]) -> float | None:
    if not values:
        return None
    mean = statistics.fmean(values)
    if mean == 0:
        return None
    return statistics.pstdev(values) / mean


def confidence_score(sample_size: int, volatility: float | None, outlier_ratio: float) -> float:
    """0-100. Zero samples score 0; more samples, lower volatility, fewer outliers score higher."""
    if sample_size <= 0:
        return 0.0
    sample_part = 50 * min(sample_size / CONFIDENCE_FULL_SAMPLES, 1.0)
    vol_part = 30 * max(0.0, 1 - (volatility or 0.0) / CONFIDENCE_MAX_VOLATILITY)
    outlier_part = 20 * max(0.0, 1 - outlier_ratio / CONFIDENCE_MAX_OUTLIER_RATIO)
    return round(sample_part + vol_part + outlier_part, 2)


def liquidity_score(
    sample_72h: int,
    sample_7d: int,
    sample_30d: int,
    last_sale_at: datetime | None,
    now: datetime,
) -> float:
    """0-100 from sales volume per window and how recent the last sale is."""
    if last_sale_at is None or max(sample_72h, sample_7d, sample_30d) == 0:
        return 0.0
    score = 40 * min(sample_72h / 5, 1.0) + 30 * min(sample_7d / 10, 1.0) + 20 * min(sample_30d / 20, 1.0)

    hours = (now - last_sale_at).total_seconds() / 3600
    if hours <= 24:
        score += 10
    elif hours <= 72:
        score += 7
    elif hours <= 168:
        score += 5
    else:
        score += 2
    return round(score, 2)


def detect_outliers(prices: list[int]) -> list[str | None]:
    """Outlier reason per price (None = not an outlier)."""
    if len(prices) < OUTLIER_MIN_SAMPLES:
        return [None] * len(prices)
    center = statistics.median(prices)
    mad = statistics.median([abs(p - center) for p in prices])
    if mad == 0:
        return [None] * len(prices)

    reasons: list[str | None] = []
    for p in prices:
        z = 0.6745 * (p - center) / mad
        if z > OUTLIER_Z_THRESHOLD:
            reasons.append(OUTLIER_ABOVE)
        elif z < -OUTLIER_Z_THRESHOLD:
            reasons.append(OUTLIER_BELOW)
        else:
            reasons.append(None)
    return reasons


def _group_key(sale: SaleRecord) -> GroupKey | None:
    if not sale.size_key:
        return None
    return (sale.sku, sale.size_key, sale.currency, sale.marketplace_id)


def flag_outliers(sales: list[SaleRecord]) -> tuple[list[SaleRecord], list[SaleFlagUpdate]]:
    """Back-fill is_outlier on eligible sales, group by group.

    Only sales with no exclusion reason take part; the outlier flag then feeds
    back into included_in_metrics.
    """
    groups: dict[GroupKey, list[SaleRecord]] = defaultdict(list)
    for sale in sales:
        key = _group_key(sale)
        if key is not None and sale.exclusion_reason is None:
            groups[key].append(sale)

    flagged: dict[tuple[str, str], SaleRecord] = {}
    updates: list[SaleFlagUpdate] = []
    for members in groups.values():
        reasons = detect_outliers([s.price_minor for s in members])
        for sale, reason in zip(members, reasons):
            updated = replace(sale, is_outlier=reason is not None, outlier_reason=reason)
            updated = replace(updated, included_in_metrics=is_included(updated))
            flagged[(sale.marketplace_id, sale.item_id)] = updated
            if (updated.is_outlier, updated.outlier_reason, updated.included_in_metrics) != (
                sale.is_outlier,
                sale.outlier_reason,
                sale.included_in_metrics,
            ):
                updates.append(
                    SaleFlagUpdate(
                        marketplace_id=sale.marketplace_id,
                        item_id=sale.item_id,
                        is_outlier=updated.is_outlier,
                        outlier_reason=updated.outlier_reason,
                        included_in_metrics=updated.included_in_metrics,
                    )
                )
    merged = [flagged.get((s.marketplace_id, s.item_id), s) for s in sales]
    return merged, updates


def compute_group_metric(key: GroupKey, sales: list[SaleRecord], now: datetime) -> SalesMetricRecord:
    """Metrics for one group from its sales in the 90d lookback (included or not)."""
    sku, size_key, currency, marketplace_id = key
    metric = SalesMetricRecord(sku=sku, size_key=size_key, currency=currency, marketplace_id=marketplace_id)

    in_90d = [s for s in sales if s.sold_at >= now - METRICS_LOOKBACK]
    included = [s for s in in_90d if s.included_in_metrics]
    for name, span in WINDOWS.items():
        prices = [s.price_minor for s in included if s.sold_at >= now - span]
        setattr(metric, f"median_{name}", median(prices))
        setattr(metric, f"sample_{name}", len(prices))

    prices_90d = [s.price_minor for s in included]
    if prices_90d:
        metric.min_90d = min(prices_90d)
        metric.max_90d = max(prices_90d)
    metric.volatility = coefficient_of_variation(prices_90d)

    eligible = [s for s in in_90d if s.exclusion_reason is None]
    outliers = sum(1 for s in eligible if s.is_outlier)
    metric.outlier_ratio = round(outliers / len(eligible), 4) if eligible else 0.0

    metric.last_sale_at = max((s.sold_at for s in included), default=None)
    metric.liquidity_score = liquidity_score(
        metric.sample_72h, metric.sample_7d, metric.sample_30d, metric.last_sale_at, now
    )
    metric.confidence_score = confidence_score(metric.sample_90d, metric.volatility, metric.outlier_ratio)
    metric.computed_at = now
    return metric


async def refresh_sales_metrics(store: MarketStore, sku: str, *, now: datetime | None = None) -> list[SalesMetricRecord]:
    """Outlier back-fill + metric upsert for every size group of one SKU."""
    now = now or utcnow()
    sales = await store.list_sale_transactions(sku=sku, since=now - METRICS_LOOKBACK)
    sales, updates = flag_outliers(sales)
    if updates:
        await store.update_sale_flags(updates)
        logger.info(f"[metrics] {sku}: updated outlier flags on {len(updates)} sales")

    groups: dict[GroupKey, list[SaleRecord]] = defaultdict(list)
    for sale in sales:
        key = _group_key(sale)
        if key is not None:
            groups[key].append(sale)

    metrics: list[SalesMetricRecord] = []
    for key, members in sorted(groups.items()):
        metric = compute_group_metric(key, members, now)
        await store.upsert_sales_metric(metric)
        metrics.append(metric)
    logger.info(f"[metrics] {sku}: {len(metrics)} size groups from {len(sales)} sales")
    return metrics


async def refresh_all_sales_metrics(
    store: MarketStore,
    *,
    sku: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Recompute metrics for one SKU or every SKU with sales in the lookback."""
    now = now or utcnow()
    skus = [sku] if sku else await store.list_sale_skus(now - METRICS_LOOKBACK)
    summary: dict[str, Any] = {"skus": 0, "groups": 0, "errors": []}
    for s in skus:
        try:
            metrics = await refresh_sales_metrics(store, s, now=now)
        except Exception as e:
            logger.exception(f"[metrics] failed for {s}: {e}")
            summary["errors"].append({"sku": s, "error": str(e)})
            continue
        summary["skus"] += 1
        summary["groups"] += len(metrics)
    return summary


def metric_payload(metric: SalesMetricRecord) -> dict[str, Any]:
    """Metric fields plus major-unit medians for display."""
    data = metric.as_dict()
    for name in WINDOWS:
        value = data.get(f"median_{name}")
        data[f"median_{name}_major"] = round(value / 100, 2) if value is not None else None
    return data
