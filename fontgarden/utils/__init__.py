"""Utility modules for the Font Garden service."""

from .rate_limiter import FetchRateLimiter
from .store import StoreError, SupabaseStore

__all__ = ["FetchRateLimiter", "StoreError", "SupabaseStore"]
