"""
Authentication package: credential store, token lifecycle and the
bearer-token guard for protected routes.
"""
