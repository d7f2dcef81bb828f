"""
contact_reconciler.api - External directory clients

The DirectoryClient interface and error taxonomy live in api.base; provider
clients are in api.google_people and api.microsoft_graph.
"""

from contact_reconciler.api.base import (
    AuthExpiredError,
    CursorExpiredError,
    DirectoryClient,
    DirectoryError,
    DirectoryPage,
    PaginationError,
    RateLimitError,
    RemoteContactNotFoundError,
    TransientDirectoryError,
)

__all__ = [
    "DirectoryClient",
    "DirectoryPage",
    "DirectoryError",
    "TransientDirectoryError",
    "RateLimitError",
    "AuthExpiredError",
    "CursorExpiredError",
    "PaginationError",
    "RemoteContactNotFoundError",
]
