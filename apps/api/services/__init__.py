"""Service layer exports."""

from .identity import (
    IdentityDirectory,
    IdentityLookupError,
    IdentityProfile,
    SqlIdentityDirectory,
    StaticIdentityDirectory,
)

__all__ = [
    "IdentityDirectory",
    "IdentityLookupError",
    "IdentityProfile",
    "SqlIdentityDirectory",
    "StaticIdentityDirectory",
]
