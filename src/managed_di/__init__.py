"""
managed-di: Inversion of control container with managed classes, scopes and declarative services.

Public API exports for the managed-di package.
"""

# Application exports
from managed_di.application.container import ManagedContainer

# Domain exports
from managed_di.domain.annotations import (
    asynchronous,
    constructor,
    cron,
    immutable,
    inject,
    intercepted,
    local,
    mutable,
    private,
    public,
    remote,
    roles_allowed,
    test_constructor,
    transactional,
)
from managed_di.domain.enums import InstanceType
from managed_di.domain.exceptions import (
    AuthorizationError,
    BugError,
    CircularDependencyError,
    ConfigurationError,
    ContainerClosedError,
    DIException,
    InvalidArgumentsError,
    InvocationError,
    NoProviderError,
    ScopeError,
    UnresolvedDependencyError,
)
from managed_di.domain.interfaces import (
    IContainer,
    IRemoteFactory,
    ITransaction,
    ITransactionalResource,
    ManagedLifeCycle,
    PostInvokeInterceptor,
    PreInvokeInterceptor,
)
from managed_di.domain.models import (
    APPLICATION_SCOPE,
    LOCAL_SCOPE,
    SESSION_SCOPE,
    THREAD_SCOPE,
    ClassDescriptor,
    InstanceScope,
    ScopeContext,
    SecurityContext,
)

__version__ = "0.1.0"

__all__ = [
    # Container
    "ManagedContainer",
    "IContainer",
    "ManagedLifeCycle",
    "ITransaction",
    "ITransactionalResource",
    "IRemoteFactory",
    "PreInvokeInterceptor",
    "PostInvokeInterceptor",
    # Models
    "ClassDescriptor",
    "InstanceType",
    "InstanceScope",
    "APPLICATION_SCOPE",
    "THREAD_SCOPE",
    "SESSION_SCOPE",
    "LOCAL_SCOPE",
    "ScopeContext",
    "SecurityContext",
    # Annotations
    "remote",
    "local",
    "public",
    "private",
    "transactional",
    "immutable",
    "mutable",
    "asynchronous",
    "cron",
    "roles_allowed",
    "intercepted",
    "constructor",
    "test_constructor",
    "inject",
    # Exceptions
    "DIException",
    "ConfigurationError",
    "CircularDependencyError",
    "UnresolvedDependencyError",
    "ScopeError",
    "NoProviderError",
    "AuthorizationError",
    "InvalidArgumentsError",
    "InvocationError",
    "BugError",
    "ContainerClosedError",
]
