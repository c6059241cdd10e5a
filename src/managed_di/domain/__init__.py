"""
Domain layer - Core business logic and models.

This layer contains the managed class metadata, the value objects and the
contracts of the container collaborators.
It has no dependencies on other layers.
"""

from .annotations import (
    asynchronous,
    constructor,
    cron,
    inject,
    intercepted,
    immutable,
    local,
    mutable,
    private,
    public,
    remote,
    roles_allowed,
    test_constructor,
    transactional,
)
from .enums import DependencyKind, InstanceType, InvocationPriority
from .exceptions import (
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
from .interfaces import (
    IContainer,
    IInstanceFactory,
    IInstancePostProcessor,
    IInvocationProcessorsChain,
    IMetadataScanner,
    IMethodInvocationProcessor,
    IRemoteFactory,
    IScopeFactory,
    ITransaction,
    ITransactionalResource,
    ManagedLifeCycle,
    PostInvokeInterceptor,
    PreInvokeInterceptor,
)
from .models import (
    APPLICATION_SCOPE,
    LOCAL_SCOPE,
    SESSION_SCOPE,
    THREAD_SCOPE,
    ClassDescriptor,
    DependencySlot,
    InstanceScope,
    MethodInvocation,
    MethodServices,
    ResolutionContext,
    ScopeContext,
    SecurityContext,
    ServiceMeta,
)

__all__ = [
    # Enums
    "InstanceType",
    "InvocationPriority",
    "DependencyKind",
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
    # Interfaces
    "IContainer",
    "IScopeFactory",
    "IInstanceFactory",
    "IInstancePostProcessor",
    "IMethodInvocationProcessor",
    "IInvocationProcessorsChain",
    "IMetadataScanner",
    "ITransaction",
    "ITransactionalResource",
    "IRemoteFactory",
    "PreInvokeInterceptor",
    "PostInvokeInterceptor",
    "ManagedLifeCycle",
    # Models
    "InstanceScope",
    "APPLICATION_SCOPE",
    "THREAD_SCOPE",
    "SESSION_SCOPE",
    "LOCAL_SCOPE",
    "ClassDescriptor",
    "DependencySlot",
    "ServiceMeta",
    "MethodServices",
    "SecurityContext",
    "ScopeContext",
    "ResolutionContext",
    "MethodInvocation",
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
]
