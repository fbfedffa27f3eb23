"""
Common utilities for the save sync.

Modules:
- gdrive: Google Drive v3 client for the private app data folder
- identity: OAuth refresh-token identity provider
- events: in-process signals with releasable subscriptions
- rate_limiter: sliding-window limiter for asyncio callers
"""

__all__ = [
    "events",
    "gdrive",
    "identity",
    "rate_limiter",
]
