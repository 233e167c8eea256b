"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and api/routes/v1/auth.py
(to apply per-route limits with @limiter.limit()).

A single shared instance means all routes share the same counter store.
Tests switch it off with `limiter.enabled = False`.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
