"""Rate limiting for authentication endpoints."""
