"""
FastAPI integration module.

Provides helpers and utilities for integrating managed-di with FastAPI.
"""

from .integration import (
    REQUEST_SCOPE,
    ScopeContextMiddleware,
    create_fastapi_dependency,
    create_scoped_dependency,
    install_request_scope,
    security_context_from_request,
)

__all__ = [
    "REQUEST_SCOPE",
    "create_fastapi_dependency",
    "create_scoped_dependency",
    "install_request_scope",
    "security_context_from_request",
    "ScopeContextMiddleware",
]
