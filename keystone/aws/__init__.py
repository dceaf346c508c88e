"""AWS integration library for Keystone bootstrap and reconciliation."""

from .lookup import LookupResult
from .sessions import assume_role

__all__ = [
    "LookupResult",
    "assume_role",
]
