"""
Application layer - Use cases and orchestration.

This layer contains the container, the managed class binding and the
scope, creation and invocation strategies built on the domain objects.
It depends only on the Domain layer.
"""

from .circular_detector import CircularDependencyDetector
from .container import ManagedContainer
from .instance_factories import (
    LocalInstanceFactory,
    ProxyInstanceFactory,
    RemoteInstanceFactory,
    ServiceInstanceFactory,
)
from .invocation_processors import AsynchronousProcessor, InterceptorProcessor, SecurityProcessor, TransactionProcessor
from .managed_class import ManagedClass
from .managed_method import ManagedMethod, MethodInvocationProcessorsChain
from .metadata_scanner import AnnotationsScanner
from .proxies import ManagedProxy, ScopeProxy, unwrap_proxy
from .resolver import DependencyResolver
from .scope_factories import ApplicationScopeFactory, PartitionedScopeFactory, SessionScopeFactory, ThreadScopeFactory

__all__ = [
    "ManagedContainer",
    "ManagedClass",
    "ManagedMethod",
    "MethodInvocationProcessorsChain",
    "DependencyResolver",
    "CircularDependencyDetector",
    "AnnotationsScanner",
    "ManagedProxy",
    "ScopeProxy",
    "unwrap_proxy",
    "ApplicationScopeFactory",
    "ThreadScopeFactory",
    "SessionScopeFactory",
    "PartitionedScopeFactory",
    "LocalInstanceFactory",
    "ProxyInstanceFactory",
    "RemoteInstanceFactory",
    "ServiceInstanceFactory",
    "SecurityProcessor",
    "AsynchronousProcessor",
    "InterceptorProcessor",
    "TransactionProcessor",
]
