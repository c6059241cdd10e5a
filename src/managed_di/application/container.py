"""Application layer - Managed container orchestration."""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple, Type, TypeVar

from managed_di.application.circular_detector import CircularDependencyDetector
from managed_di.application.instance_factories import (
    LocalInstanceFactory,
    ProxyInstanceFactory,
    RemoteInstanceFactory,
    ServiceInstanceFactory,
)
from managed_di.application.instance_processors import (
    ConfigurableProcessor,
    FieldsInjectionProcessor,
    PostConstructProcessor,
)
from managed_di.application.invocation_processors import (
    AsynchronousProcessor,
    InterceptorProcessor,
    SecurityProcessor,
    TransactionProcessor,
)
from managed_di.application.managed_class import ManagedClass
from managed_di.application.managed_method import ManagedMethod
from managed_di.application.metadata_scanner import AnnotationsScanner
from managed_di.application.proxies import unwrap_proxy
from managed_di.application.resolver import DependencyResolver
from managed_di.application.scope_factories import ApplicationScopeFactory, SessionScopeFactory, ThreadScopeFactory
from managed_di.domain import (
    LOCAL_SCOPE,
    SESSION_SCOPE,
    BugError,
    ClassDescriptor,
    ConfigurationError,
    ContainerClosedError,
    IContainer,
    IInstanceFactory,
    IInstancePostProcessor,
    IMetadataScanner,
    IMethodInvocationProcessor,
    InstanceScope,
    InstanceType,
    IRemoteFactory,
    IScopeFactory,
    ITransactionalResource,
    NoProviderError,
    ScopeContext,
    ScopeError,
    UnresolvedDependencyError,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

_scope_context: ContextVar[Optional[ScopeContext]] = ContextVar("managed_di_scope_context", default=None)


class ManagedContainer(IContainer):
    """Main inversion of control container.

    Binds class descriptors to managed classes, creates and caches their
    instances per scope, wires dependencies and routes calls on intercepted
    instances through the method invocation processors.

    Attributes:
        _registry: Managed classes by interface type, in declaration order.
        _implementations: Managed classes by implementation type.
        _managed_classes_by_key: Managed classes by creation key.
        _scope_factories: Scope caches by instance scope.
        _instance_factories: Creation strategies by instance type.
        _instance_processors: Hooks run on every created instance.
        _invocation_processors: Processors available to managed methods.
        _resolver: Component resolving dependencies.
        _circular_detector: Component detecting circular dependencies.
        _creation_locks: Locks serializing instance creation, by scope and instance key.

    Example:
        >>> container = ManagedContainer()
        >>> container.configure([
        ...     ClassDescriptor(name="repository", implementation_type=Repository),
        ...     ClassDescriptor(
        ...         name="service",
        ...         interface_type=IService,
        ...         implementation_type=Service,
        ...         instance_type="intercepted",
        ...     ),
        ... ])
        >>> container.start()
        >>> service = container.get_instance(IService)
        >>> container.destroy()
    """

    def __init__(self, max_async_workers: int = 4, metadata_scanner: Optional[IMetadataScanner] = None) -> None:
        """Initialize the container with the built-in factories and processors.

        Args:
            max_async_workers: Worker threads for asynchronous methods.
            metadata_scanner: Declarative services metadata reader.
        """
        self._registry: Dict[Any, ManagedClass] = {}
        self._implementations: Dict[type, ManagedClass] = {}
        self._managed_classes_by_key: Dict[int, ManagedClass] = {}
        self._metadata_scanner: IMetadataScanner = metadata_scanner or AnnotationsScanner()

        self._scope_factories: Dict[InstanceScope, IScopeFactory] = {}
        for scope_factory in (ApplicationScopeFactory(), ThreadScopeFactory(), SessionScopeFactory()):
            self.register_scope_factory(scope_factory)

        self._remote_instance_factory = RemoteInstanceFactory()
        self._instance_factories: Dict[InstanceType, IInstanceFactory] = {}
        for instance_factory in (
            LocalInstanceFactory(),
            ProxyInstanceFactory(),
            self._remote_instance_factory,
            ServiceInstanceFactory(),
        ):
            self.register_instance_factory(instance_factory)

        self._instance_processors: List[IInstancePostProcessor] = [
            FieldsInjectionProcessor(self),
            ConfigurableProcessor(),
            PostConstructProcessor(),
        ]
        self._invocation_processors: List[IMethodInvocationProcessor] = [
            SecurityProcessor(),
            AsynchronousProcessor(max_async_workers),
            InterceptorProcessor(self),
            TransactionProcessor(self),
        ]

        self._resolver = DependencyResolver(self)
        self._circular_detector = CircularDependencyDetector()
        self._creation_locks: Dict[Tuple[InstanceScope, Hashable], Any] = {}
        self._creation_locks_guard = threading.Lock()
        self._destroy_started = False

    def register_scope_factory(self, scope_factory: IScopeFactory) -> None:
        """Register a scope factory, replacing the one serving the same scope.

        Must be called before ``configure()`` for the scope to be usable.
        """
        self._scope_factories[scope_factory.instance_scope] = scope_factory
        logger.debug("Registered scope factory for %s scope.", scope_factory.instance_scope)

    def register_instance_factory(self, instance_factory: IInstanceFactory) -> None:
        """Register an instance factory, replacing the one serving the same instance type."""
        self._instance_factories[instance_factory.instance_type] = instance_factory

    def register_remote_factory(self, remote_factory: IRemoteFactory) -> None:
        """Register the remote factory used for a URL protocol."""
        self._remote_instance_factory.register_remote_factory(remote_factory)

    def register_instance_processor(self, instance_processor: IInstancePostProcessor) -> None:
        """Append a hook run on every created instance, after the built-in ones."""
        self._instance_processors.append(instance_processor)

    def register_invocation_processor(self, invocation_processor: IMethodInvocationProcessor) -> None:
        """Add a method invocation processor; affects managed classes configured afterwards."""
        self._invocation_processors.append(invocation_processor)

    @property
    def metadata_scanner(self) -> IMetadataScanner:
        return self._metadata_scanner

    @property
    def invocation_processors(self) -> List[IMethodInvocationProcessor]:
        return list(self._invocation_processors)

    @property
    def circular_detector(self) -> CircularDependencyDetector:
        return self._circular_detector

    def get_scope_factory(self, instance_scope: InstanceScope) -> Optional[IScopeFactory]:
        return self._scope_factories.get(instance_scope)

    def get_instance_factory(self, instance_type: InstanceType) -> Optional[IInstanceFactory]:
        return self._instance_factories.get(instance_type)

    def configure(self, descriptors: Iterable[ClassDescriptor]) -> None:
        """Bind class descriptors to managed classes.

        Declaration order defines creation keys, hence shutdown order. A later
        descriptor for the same lookup type replaces the earlier one in place.

        Args:
            descriptors: Ordered class descriptors.

        Raises:
            ConfigurationError: If any descriptor or class metadata is invalid.
        """
        if self._destroy_started:
            raise ContainerClosedError("Cannot configure a destroyed container.")

        ordered: Dict[Any, ClassDescriptor] = {}
        for descriptor in descriptors:
            lookup_type = descriptor.lookup_type
            if lookup_type is None:
                raise ConfigurationError(
                    f"Managed class '{descriptor.name}': no interface nor implementation type declared."
                )
            if lookup_type in self._registry:
                raise ConfigurationError(
                    f"Managed class '{descriptor.name}': {lookup_type.__qualname__} is already registered."
                )
            if lookup_type in ordered:
                logger.debug(
                    "Managed class '%s' overrides '%s' for %s.",
                    descriptor.name,
                    ordered[lookup_type].name,
                    lookup_type.__qualname__,
                )
            ordered[lookup_type] = descriptor

        managed_classes = [ManagedClass(self, descriptor) for descriptor in ordered.values()]
        for managed_class in managed_classes:
            self._registry[managed_class.interface_type] = managed_class
            self._managed_classes_by_key[managed_class.key] = managed_class
            if managed_class.implementation_type is not None:
                self._implementations[managed_class.implementation_type] = managed_class

        if any(managed_class.is_transactional for managed_class in managed_classes):
            if ITransactionalResource not in self._registry:
                raise ConfigurationError("Transactional managed classes require a managed ITransactionalResource.")

        logger.debug("Configured %d managed classes.", len(managed_classes))

    def start(self) -> None:
        """Create auto-instantiated managed classes, in declaration order."""
        for managed_class in self.get_managed_classes():
            if managed_class.is_auto_instantiate:
                logger.debug("Auto-instantiate %s.", managed_class)
                self.get_instance(managed_class.interface_type)

    def get_managed_class(self, interface_type: Any) -> Optional[ManagedClass]:
        try:
            return self._registry.get(interface_type)
        except TypeError:
            return None

    def is_managed_class(self, interface_type: Any) -> bool:
        return self.get_managed_class(interface_type) is not None

    def get_managed_classes(self) -> List[ManagedClass]:
        return sorted(self._registry.values(), key=lambda managed_class: managed_class.key)

    def get_managed_methods(self) -> List[ManagedMethod]:
        return [
            managed_method
            for managed_class in self.get_managed_classes()
            for managed_method in managed_class.get_managed_methods()
        ]

    @contextmanager
    def scope(self, scope_context: ScopeContext) -> Iterator[ScopeContext]:
        """Bind a calling context for the duration of the block.

        The binding lives in a context variable, so it follows asyncio tasks
        and ``contextvars.copy_context()`` but not raw new threads.

        Example:
            >>> with container.scope(ScopeContext(session_id="abc")):
            ...     cart = container.get_instance(ShoppingCart)
        """
        token = _scope_context.set(scope_context)
        try:
            yield scope_context
        finally:
            _scope_context.reset(token)

    def current_scope_context(self) -> ScopeContext:
        scope_context = _scope_context.get()
        return scope_context if scope_context is not None else ScopeContext()

    def get_instance(self, interface_type: Type[T], scope_context: Optional[ScopeContext] = None) -> T:
        """Return the instance wired for the interface type.

        Args:
            interface_type: Lookup type of a managed class.
            scope_context: Calling context; defaults to the bound one.

        Returns:
            Cached or newly created instance; intercepted types get a managed proxy.

        Raises:
            UnresolvedDependencyError: If no managed class is wired for the type.
            CircularDependencyError: If creation requires the type itself.
            ContainerClosedError: If the container shutdown has started.

        Example:
            >>> service = container.get_instance(IUserService)
        """
        return self._lookup(interface_type, None, scope_context)

    def get_instance_by_name(
        self, instance_name: str, interface_type: Type[T], scope_context: Optional[ScopeContext] = None
    ) -> T:
        """Return the named instance of the managed class wired for the interface type.

        Every name gets its own instance, cached by the scope of the managed
        class next to the unnamed one.

        Example:
            >>> primary = container.get_instance_by_name("primary", IDataSource)
            >>> replica = container.get_instance_by_name("replica", IDataSource)
        """
        return self._lookup(interface_type, instance_name, scope_context)

    def _lookup(self, interface_type: Any, instance_name: Optional[str], scope_context: Optional[ScopeContext]) -> Any:
        self._check_open(interface_type)
        if scope_context is not None:
            with self.scope(scope_context):
                return self._lookup(interface_type, instance_name, None)

        managed_class = self.get_managed_class(interface_type)
        if managed_class is None:
            raise UnresolvedDependencyError(interface_type)

        with self._circular_detector.resolution_context() as context:
            with self._circular_detector.tracking(context, interface_type):
                return self.get_scoped_instance(managed_class, instance_name)

    def get_optional_instance(
        self, interface_type: Type[T], scope_context: Optional[ScopeContext] = None
    ) -> Optional[T]:
        """Same as ``get_instance`` but returns None when nothing is wired.

        Services without an installed provider also yield None; any other
        failure of a wired managed class is raised, as is a closed container.
        """
        self._check_open(interface_type)
        if self.get_managed_class(interface_type) is None:
            return None
        try:
            return self.get_instance(interface_type, scope_context)
        except NoProviderError:
            logger.debug("No provider for optional service %s.", interface_type)
            return None

    def get_remote_instance(self, url: str, interface_type: Type[T]) -> T:
        """Return a proxy to the remote service located by the URL.

        The interface needs no managed class and the proxy is not cached.

        Raises:
            ConfigurationError: If no remote factory serves the URL protocol.
            ContainerClosedError: If the container shutdown has started.
        """
        self._check_open(interface_type)
        return self._remote_instance_factory.get_remote_instance(url, interface_type)

    def _check_open(self, interface_type: Any) -> None:
        if self._destroy_started:
            raise ContainerClosedError(f"Container is closed; cannot provide {interface_type!r}.")

    def resolve_dependency(self, requester: Optional[ManagedClass], dependency_type: Any) -> Any:
        """Resolve a dependency of a managed class within the current resolution context."""
        with self._circular_detector.resolution_context() as context:
            return self._resolver.resolve(requester, dependency_type, context)

    def get_scoped_instance(self, managed_class: ManagedClass, instance_name: Optional[str] = None) -> Any:
        """Return the instance of a managed class for the current scope context, creating it on miss.

        Creation is serialized per scope and instance key, so instances of
        other managed classes can be created meanwhile, from any thread.
        """
        if self._destroy_started:
            raise ContainerClosedError(f"Container is closed; cannot provide {managed_class}.")

        if managed_class.instance_scope == LOCAL_SCOPE:
            return self._create_instance(managed_class)

        instance_key: Hashable = managed_class.key if instance_name is None else (managed_class.key, instance_name)
        scope_factory = self._scope_factories[managed_class.instance_scope]
        scope_context = self.current_scope_context()
        instance = scope_factory.get_instance(instance_key, scope_context)
        if instance is None:
            with self._creation_lock(managed_class.instance_scope, instance_key):
                instance = scope_factory.get_instance(instance_key, scope_context)
                if instance is None:
                    instance = self._create_instance(managed_class)
                    scope_factory.persist_instance(instance_key, scope_context, instance)
        return instance

    def _creation_lock(self, instance_scope: InstanceScope, instance_key: Hashable) -> Any:
        with self._creation_locks_guard:
            lock = self._creation_locks.get((instance_scope, instance_key))
            if lock is None:
                lock = self._creation_locks[(instance_scope, instance_key)] = threading.RLock()
            return lock

    def _create_instance(self, managed_class: ManagedClass) -> Any:
        arguments = {
            slot.name: self.resolve_dependency(managed_class, slot.dependency_type)
            for slot in managed_class.constructor_dependencies
        }
        instance = self._instance_factories[managed_class.instance_type].create_instance(managed_class, arguments)

        if managed_class.instance_type.requires_implementation:
            raw_instance = unwrap_proxy(instance)
            for instance_processor in self._instance_processors:
                instance_processor.post_process_instance(managed_class, raw_instance)

        logger.debug("Created instance of %s.", managed_class)
        return instance

    def on_instance_out_of_scope(self, instance: Any) -> None:
        """Run pre-destroy semantics for an instance retired from a scope cache.

        Raises:
            BugError: If the instance does not belong to a managed class.
        """
        managed_class = self._implementations.get(type(unwrap_proxy(instance)))
        if managed_class is None:
            raise BugError(f"Instance {instance!r} retired from scope is not managed by this container.")
        self._pre_destroy(managed_class, instance)

    def _owner_of(self, instance_key: Hashable) -> ManagedClass:
        key = instance_key[0] if isinstance(instance_key, tuple) else instance_key
        managed_class = self._managed_classes_by_key.get(key)
        if managed_class is None:
            raise BugError(f"Instance key {instance_key!r} does not belong to a managed class of this container.")
        return managed_class

    def end_scope(self, instance_scope: InstanceScope, scope_context: Optional[ScopeContext] = None) -> None:
        """Retire the scope partition of a calling context, running pre-destroy on its instances.

        Instances are retired in reverse creation order.

        Raises:
            ScopeError: If the scope is not a registered contextual scope.
        """
        scope_factory = self._scope_factories.get(instance_scope)
        if scope_factory is None or not scope_factory.is_contextual:
            raise ScopeError(f"Cannot end {instance_scope} scope.")
        retired = scope_factory.retire(scope_context or self.current_scope_context())
        for instance_key, instance in reversed(retired):
            self._pre_destroy(self._owner_of(instance_key), instance)
        logger.debug("Ended %s scope; %d instances retired.", instance_scope, len(retired))

    def close_session(self, session_id: str) -> None:
        """Retire the session scope partition of a session."""
        self.end_scope(SESSION_SCOPE, ScopeContext(session_id=session_id))

    def _pre_destroy(self, managed_class: ManagedClass, instance: Any) -> None:
        if not managed_class.instance_type.requires_implementation:
            return
        pre_destroy = getattr(unwrap_proxy(instance), "pre_destroy", None)
        if not callable(pre_destroy):
            return
        try:
            pre_destroy()
        except BugError:
            raise
        except Exception:
            logger.exception("Error on pre-destroy of %s.", managed_class)

    def destroy(self) -> None:
        """Shut the container down.

        Pending asynchronous calls are awaited, then pre-destroy runs on every
        cached instance of non-local managed classes in reverse declaration
        order, named instances included. Hook errors are logged and do not
        stop the remaining hooks. Afterwards the registry is empty and no
        instance can be created.

        Raises:
            BugError: If shutdown was already started.
        """
        if self._destroy_started:
            raise BugError("Container shutdown already started.")
        self._destroy_started = True

        for invocation_processor in self._invocation_processors:
            close = getattr(invocation_processor, "close", None)
            if callable(close):
                close()

        cached: List[Tuple[ManagedClass, Any]] = [
            (self._owner_of(instance_key), instance)
            for scope_factory in self._scope_factories.values()
            for instance_key, instance in scope_factory.get_cached_instances()
        ]
        cached.sort(key=lambda item: item[0].key, reverse=True)
        for managed_class, instance in cached:
            self._pre_destroy(managed_class, instance)

        for scope_factory in self._scope_factories.values():
            scope_factory.clear()
        self._registry.clear()
        self._implementations.clear()
        self._managed_classes_by_key.clear()
        self._creation_locks.clear()
        self._circular_detector.clear()
        logger.debug("Container destroyed.")

    @property
    def is_destroyed(self) -> bool:
        return self._destroy_started

    def __enter__(self) -> "ManagedContainer":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        if not self._destroy_started:
            self.destroy()
        return False
