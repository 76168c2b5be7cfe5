"""Authentication module for SimplHost."""

from .guard import get_user_scope
from .scope import AuthenticatedUser, ScopedDomains, ScopedSites, UserScope
from .supabase_auth import SupabaseAuthClient

__all__ = [
    "AuthenticatedUser",
    "ScopedDomains",
    "ScopedSites",
    "SupabaseAuthClient",
    "UserScope",
    "get_user_scope",
]
