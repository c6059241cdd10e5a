from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple, Type, TypeVar

from managed_di.domain.enums import InstanceType, InvocationPriority
from managed_di.domain.models import InstanceScope, MethodInvocation, ScopeContext, ServiceMeta

T = TypeVar("T")


class IContainer(ABC):
    """Container contract exposed to managed instances and collaborators.

    Declaring a dependency on ``IContainer`` injects the container itself.
    """

    @abstractmethod
    def get_instance(self, interface_type: Type[T], scope_context: Optional[ScopeContext] = None) -> T:
        """Return the instance wired for the interface type.

        Args:
            interface_type: Lookup type of a managed class.
            scope_context: Calling context; defaults to the bound one.

        Raises:
            UnresolvedDependencyError: If no managed class is wired for the type.
        """

    @abstractmethod
    def get_optional_instance(
        self, interface_type: Type[T], scope_context: Optional[ScopeContext] = None
    ) -> Optional[T]:
        """Same as ``get_instance`` but returns None when nothing is wired."""

    @abstractmethod
    def get_instance_by_name(
        self, instance_name: str, interface_type: Type[T], scope_context: Optional[ScopeContext] = None
    ) -> T:
        """Return the named instance of the managed class wired for the interface type.

        Each name gets its own instance, cached by the managed class scope.
        """

    @abstractmethod
    def get_remote_instance(self, url: str, interface_type: Type[T]) -> T:
        """Return an uncached proxy to the remote service located by the URL."""

    @abstractmethod
    def get_managed_class(self, interface_type: Type) -> Any:
        """Return the managed class registered for the interface type."""

    @abstractmethod
    def get_managed_classes(self) -> Iterable[Any]:
        """Iterate over all managed classes in creation order."""

    @abstractmethod
    def get_managed_methods(self) -> Iterable[Any]:
        """Iterate over the managed methods of all managed classes."""

    @abstractmethod
    def on_instance_out_of_scope(self, instance: Any) -> None:
        """Run pre-destroy semantics for an instance retired from a scope cache."""

    @abstractmethod
    def current_scope_context(self) -> ScopeContext:
        """Return the calling context bound to the current execution context."""


class IScopeFactory(ABC):
    """Scope cache keyed by instance key and scope partition.

    The instance key of the default instance of a managed class is the
    managed class key; named instances use a ``(key, name)`` tuple.
    """

    @property
    @abstractmethod
    def instance_scope(self) -> InstanceScope:
        """Scope served by this factory."""

    @property
    @abstractmethod
    def is_contextual(self) -> bool:
        """Whether partitions follow the calling context."""

    @abstractmethod
    def get_instance(self, key: Hashable, context: ScopeContext) -> Optional[Any]:
        """Return the cached instance or None."""

    @abstractmethod
    def persist_instance(self, key: Hashable, context: ScopeContext, instance: Any) -> None:
        """Cache an instance for the context partition."""

    @abstractmethod
    def get_cached_instances(self) -> List[Tuple[Hashable, Any]]:
        """Return the (instance key, instance) pairs cached across all partitions."""

    @abstractmethod
    def retire(self, context: ScopeContext) -> List[Tuple[Hashable, Any]]:
        """Drop the context partition and return the (instance key, instance) pairs it held."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all cached instances."""


class IInstanceFactory(ABC):
    """Creation strategy for one instance type."""

    @property
    @abstractmethod
    def instance_type(self) -> InstanceType:
        """Instance type served by this factory."""

    @abstractmethod
    def create_instance(self, managed_class: Any, arguments: Dict[str, Any]) -> Any:
        """Create a new instance.

        Args:
            managed_class: The managed class to instantiate.
            arguments: Resolved constructor arguments, by parameter name.
        """


class IInstancePostProcessor(ABC):
    """Hook executed on every freshly created instance, before it is cached."""

    @abstractmethod
    def post_process_instance(self, managed_class: Any, instance: Any) -> None:
        """Process a raw, not proxied, instance."""


class IInvocationProcessorsChain(ABC):
    """Iterator over the processors of one method invocation."""

    @abstractmethod
    def invoke_next_processor(self, invocation: MethodInvocation) -> Any:
        """Hand the invocation over to the next processor in the chain."""


class IMethodInvocationProcessor(ABC):
    """Around-call handler contributing a declarative service to managed methods."""

    @property
    @abstractmethod
    def priority(self) -> InvocationPriority:
        """Position in the chain, lowest runs first."""

    @abstractmethod
    def is_applicable(self, managed_method: Any) -> bool:
        """Whether this processor takes part in the managed method chain."""

    @abstractmethod
    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        """Act on the invocation, delegating to ``chain`` or short-circuiting."""


class IMetadataScanner(ABC):
    """Reads declarative service metadata from types and functions."""

    @abstractmethod
    def scan_class(self, implementation_type: Type) -> ServiceMeta:
        """Return class level metadata."""

    @abstractmethod
    def scan_method(self, implementation_type: Type, name: str) -> ServiceMeta:
        """Return metadata of the named method."""


class ITransaction(ABC):
    """Transaction handle created by a transactional resource."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the transaction."""

    @abstractmethod
    def close(self) -> bool:
        """Close the transaction and return True when it was the outermost one."""

    @abstractmethod
    def get_session(self) -> Any:
        """Return the persistence session owned by the transaction."""


class ITransactionalResource(ABC):
    """Persistence collaborator used by the transaction processor."""

    @abstractmethod
    def create_transaction(self, schema: Optional[str] = None) -> ITransaction:
        """Begin a read-write transaction."""

    @abstractmethod
    def create_read_only_transaction(self, schema: Optional[str] = None) -> ITransaction:
        """Begin a read-only transaction."""

    @abstractmethod
    def store_session(self, session: Any) -> None:
        """Bind the transaction session to the current thread."""

    @abstractmethod
    def release_session(self) -> None:
        """Unbind the session from the current thread."""


class IRemoteFactory(ABC):
    """Creates client stubs for remote classes, one factory per URL protocol."""

    @property
    @abstractmethod
    def protocol(self) -> str:
        """URL scheme served by this factory, e.g. ``http``."""

    @abstractmethod
    def get_remote_instance(self, interface_type: Type[T], url: str) -> T:
        """Return a stub implementing the interface."""


class PreInvokeInterceptor(ABC):
    """Application interceptor executed before the managed method."""

    @abstractmethod
    def pre_invoke(self, managed_method: Any, args: tuple) -> None:
        """Called with the managed method and positional arguments."""


class PostInvokeInterceptor(ABC):
    """Application interceptor executed after the managed method returns."""

    @abstractmethod
    def post_invoke(self, managed_method: Any, args: tuple, return_value: Any) -> None:
        """Called with the managed method, positional arguments and value returned."""


class ManagedLifeCycle(ABC):
    """Application scoped implementation created at startup and notified on life cycle events."""

    @abstractmethod
    def post_construct(self) -> None:
        """Called after dependencies are injected and configuration applied."""

    @abstractmethod
    def pre_destroy(self) -> None:
        """Called on container shutdown."""
