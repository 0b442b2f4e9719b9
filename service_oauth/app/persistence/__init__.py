"""
Persistence package.

Client for the json-server style users/tokens store. Every operation is a
find-or-create-else-update sequence; failures are logged and absorbed so a
store outage never aborts authentication.
"""

from .user_store import UserStoreClient

__all__ = ["UserStoreClient"]
