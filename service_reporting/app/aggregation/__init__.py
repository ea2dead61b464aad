"""
Aggregation package.

Pure functions turning normalized records into gap-filled time series,
dimension groups and rates derived from totals.
"""
