"""Authentication and authorization module.

This module provides:
- Token verification (Supabase JWKS verifier)
- Auth middleware for FastAPI
- Request state with viewer identity and plan

Note: Test-only verifiers are in tests/support/mock_verifier.py
"""

from linkranger.auth.middleware import AuthMiddleware, Viewer, get_viewer, require_developer
from linkranger.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "require_developer",
    "SupabaseJwksVerifier",
    "TokenVerifier",
]
