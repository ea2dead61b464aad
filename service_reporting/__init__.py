"""
Reporting Service package.

Serves aggregated advertising, analytics, search, sales, appraisal,
support chat and error-log reports behind bearer-token authentication,
a response cache and per-operation cache-aside.

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.caching: TTL store, cache keys, TTL table and response cache.
- app.aggregation: Normalized records and the aggregation engine.
- app.auth: Credential store, token lifecycle and bearer guard.
- app.adapters: Vendor data client and per-domain row adapters.
- app.domain: Validation, report builders and domain handlers.
"""
