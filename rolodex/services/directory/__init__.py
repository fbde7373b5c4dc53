"""
External contact directory providers.
"""

from .base import (
    ContactDirectory,
    DirectoryAuthorization,
    DirectoryEntry,
    DirectoryError,
    DirectoryPermissionError,
    normalize_phone,
    resolve_access,
    split_name,
)

__all__ = [
    "ContactDirectory",
    "DirectoryAuthorization",
    "DirectoryEntry",
    "DirectoryError",
    "DirectoryPermissionError",
    "normalize_phone",
    "resolve_access",
    "split_name",
]
