"""Business logic services.

Services contain all sync, aggregation and retention logic and are called by
routes and scripts. They take their dependencies (store, providers, settings)
explicitly.
"""
