"""Snapshot service: persist normalized market data and read the latest view.

Handles:
- Variant upsert + append-only snapshot insert for one provider batch
- Rejection of implausible prices (units mix-ups such as cents stored as major)
- Freshness labels and optional read-time FX conversion for the latest view
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from market_sync.services.fx import FxError, FxRates, convert_amount
from market_sync.services.normalization import is_plausible_price
from market_sync.services.types import Freshness, LatestMarketRow, SnapshotRecord, VariantMarketSnapshot
from market_sync.settings import Settings
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")


@dataclass
class PersistResult:
    inserted: int = 0
    duplicates: int = 0
    rejected: int = 0
    variant_ids: list[int] = field(default_factory=list)


def implausible_fields(snapshot: VariantMarketSnapshot, max_price: float) -> list[str]:
    return [
        name
        for name in ("lowest_ask", "highest_bid", "last_sale_price")
        if not is_plausible_price(getattr(snapshot, name), max_price=max_price)
    ]


async def persist_market_batch(
    store: MarketStore,
    style_id: str,
    snapshots: list[VariantMarketSnapshot],
    *,
    observed_at: datetime,
    max_price: float,
) -> PersistResult:
    """Write one provider fetch as snapshots stamped `observed_at`.

    A snapshot with any implausible price is dropped entirely rather than
    partially stored.
    """
    result = PersistResult()
    for snap in snapshots:
        bad = implausible_fields(snap, max_price)
        if bad:
            result.rejected += 1
            logger.warning(
                f"[snapshots] rejected {style_id} {snap.provider.value} size={snap.variant.size} "
                f"{snap.currency}: implausible {', '.join(bad)}"
            )
            continue

        variant_id = await store.upsert_variant(
            style_id=style_id,
            provider=snap.provider,
            size_value=snap.variant.size,
            size_system=snap.variant.size_system.value,
            region_id=snap.variant.region_id,
            consigned=snap.variant.consigned,
            external_variant_id=snap.variant.external_variant_id,
        )
        result.variant_ids.append(variant_id)
        inserted = await store.insert_snapshot(
            SnapshotRecord(
                style_id=style_id,
                variant_id=variant_id,
                provider=snap.provider,
                region_id=snap.variant.region_id,
                currency=snap.currency,
                lowest_ask=snap.lowest_ask,
                highest_bid=snap.highest_bid,
                last_sale_price=snap.last_sale_price,
                snapshot_at=observed_at,
                sales_72h=snap.sales_72h,
                sales_7d=snap.sales_7d,
                sales_30d=snap.sales_30d,
                volatility=snap.volatility,
                liquidity=snap.liquidity,
            )
        )
        if inserted:
            result.inserted += 1
        else:
            result.duplicates += 1
    return result


def freshness_for(snapshot_at: datetime, now: datetime, settings: Settings) -> Freshness:
    age_minutes = (now - snapshot_at).total_seconds() / 60
    if age_minutes <= settings.fresh_minutes:
        return Freshness.FRESH
    if age_minutes <= settings.aging_minutes:
        return Freshness.AGING
    return Freshness.STALE


def latest_row_payload(
    row: LatestMarketRow,
    *,
    now: datetime,
    settings: Settings,
    currency: str | None = None,
    rates: FxRates | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "provider": row.provider.value,
        "size": row.size_value,
        "size_system": row.size_system,
        "region_id": row.region_id,
        "consigned": row.consigned,
        "currency": row.currency,
        "lowest_ask": row.lowest_ask,
        "highest_bid": row.highest_bid,
        "last_sale_price": row.last_sale_price,
        "snapshot_at": row.snapshot_at,
        "freshness": freshness_for(row.snapshot_at, now, settings).value,
        "converted": False,
    }
    if currency and currency.upper() != row.currency and rates is not None:
        payload.update(
            currency=currency.upper(),
            lowest_ask=convert_amount(row.lowest_ask, row.currency, currency, rates),
            highest_bid=convert_amount(row.highest_bid, row.currency, currency, rates),
            last_sale_price=convert_amount(row.last_sale_price, row.currency, currency, rates),
            converted=True,
            source_currency=row.currency,
        )
    return payload


async def latest_market_view(
    store: MarketStore,
    style_id: str,
    *,
    now: datetime,
    settings: Settings,
    currency: str | None = None,
    rates: FxRates | None = None,
) -> list[dict[str, Any]]:
    """Latest rows for a style with freshness labels.

    With `currency`, rows quoted in that currency are returned as-is; a variant
    only quoted in other currencies is converted at read time (when rates are
    available) or skipped.
    """
    rows = await store.get_latest(style_id)
    if not currency:
        return [latest_row_payload(r, now=now, settings=settings) for r in rows]

    target = currency.upper()
    native = {r.variant_id for r in rows if r.currency == target}
    out: list[dict[str, Any]] = []
    converted: set[int] = set()
    for row in rows:
        if row.currency == target:
            out.append(latest_row_payload(row, now=now, settings=settings))
            continue
        if row.variant_id in native or row.variant_id in converted or rates is None:
            continue
        try:
            out.append(latest_row_payload(row, now=now, settings=settings, currency=target, rates=rates))
        except FxError as e:
            logger.warning(f"[snapshots] cannot convert {row.currency}->{target}: {e}")
            continue
        converted.add(row.variant_id)
    return out
