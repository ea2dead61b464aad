"""
Reporting caching package.

An in-process TTL store shared by the HTTP response cache and the
per-operation cache-aside in the domain handlers. TTLs come from the
declarative table in ``policies``.
"""
