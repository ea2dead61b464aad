"""
Adapters package for the Reporting Service.

- vendor_client: boundary to the external data providers (HTTP or static)
- row_adapters: per-domain mapping of raw vendor rows into Records
"""
