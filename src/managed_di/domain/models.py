import importlib
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from managed_di.domain.enums import DependencyKind, InstanceType
from managed_di.domain.exceptions import CircularDependencyError


def import_type(reference: Any) -> Any:
    """Import a class from a ``package.module:Name`` or ``package.module.Name`` reference.

    Non-string values are returned unchanged.

    Raises:
        ValueError: If the module or the attribute cannot be imported.
    """
    if not isinstance(reference, str):
        return reference
    if ":" in reference:
        module_name, _, qualname = reference.partition(":")
    else:
        module_name, _, qualname = reference.rpartition(".")
    if not module_name or not qualname:
        raise ValueError(f"Invalid type reference '{reference}'")
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import module '{module_name}': {e}") from e
    for part in qualname.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ValueError(f"Module '{module_name}' has no attribute '{qualname}'") from e
    if not isinstance(target, type):
        raise ValueError(f"Type reference '{reference}' does not name a class")
    return target


class InstanceScope(BaseModel):
    """Value object naming the life span of managed instances.

    Built-in scopes are ``application``, ``thread``, ``session`` and the
    ``local`` pseudo-scope; any other name refers to a custom scope factory
    registered on the container.

    Attributes:
        name: Lower case scope name.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Scope name.")

    @field_validator("name")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return value.strip().lower()

    def __str__(self) -> str:
        return self.name


APPLICATION_SCOPE = InstanceScope(name="application")
THREAD_SCOPE = InstanceScope(name="thread")
SESSION_SCOPE = InstanceScope(name="session")
LOCAL_SCOPE = InstanceScope(name="local")


class ClassDescriptor(BaseModel):
    """Declarative description of a managed class supplied at boot.

    Descriptors are usually created in code or loaded from a YAML/JSON file.
    Type fields accept classes or import strings, and the aliases used by
    configuration files (``interface``, ``class``, ``type``, ``scope``, ``url``)
    are accepted as well.

    Attributes:
        name: Unique managed class name, also the configuration section name.
        interface_type: Type used for lookups; defaults to the implementation.
        implementation_type: Concrete class instantiated by the container.
        instance_type: How instances are created.
        instance_scope: How long instances live.
        remote_url: Location of the remote class, for remote instance type.
        config: Configuration section passed to ``configure()``.
        static_config: Class attributes initialized once at boot.

    Example:
        >>> ClassDescriptor(
        ...     name="repository",
        ...     interface_type=Repository,
        ...     implementation_type=SqlRepository,
        ...     instance_scope="thread",
        ... )
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Managed class name.")
    interface_type: Optional[Type] = Field(default=None, alias="interface", description="Lookup type.")
    implementation_type: Optional[Type] = Field(default=None, alias="class", description="Implementation class.")
    instance_type: InstanceType = Field(default=InstanceType.DIRECT, alias="type", description="Creation strategy.")
    instance_scope: InstanceScope = Field(default=APPLICATION_SCOPE, alias="scope", description="Instance life span.")
    remote_url: Optional[str] = Field(default=None, alias="url", description="Remote class location.")
    config: Optional[Dict[str, Any]] = Field(default=None, description="Configuration section.")
    static_config: Dict[str, Any] = Field(default_factory=dict, description="Static attributes values.")

    @field_validator("interface_type", "implementation_type", mode="before")
    @classmethod
    def _import_type(cls, value: Any) -> Any:
        return import_type(value)

    @field_validator("instance_type", mode="before")
    @classmethod
    def _parse_instance_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("instance_scope", mode="before")
    @classmethod
    def _parse_instance_scope(cls, value: Any) -> Any:
        if isinstance(value, str):
            return InstanceScope(name=value)
        return value

    @property
    def lookup_type(self) -> Optional[Type]:
        """Type the managed class is registered under."""
        return self.interface_type or self.implementation_type


class DependencySlot(BaseModel):
    """Injectable constructor parameter or field of a managed class.

    Attributes:
        name: Parameter or attribute name.
        dependency_type: Resolved type hint.
        kind: Constructor parameter or field.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    dependency_type: Any
    kind: DependencyKind


class ServiceMeta(BaseModel):
    """Declarative service metadata attached to classes and functions by decorators.

    ``None`` means the decorator was not applied, so class level values can
    act as defaults for methods.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    remote: Optional[bool] = None
    access: Optional[str] = None
    transactional: Optional[bool] = None
    schema_name: Optional[str] = None
    immutable: Optional[bool] = None
    asynchronous: Optional[bool] = None
    cron: Optional[str] = None
    roles: Optional[Tuple[str, ...]] = None
    interceptor: Optional[Type] = None
    constructor: Optional[bool] = None
    test_constructor: Optional[bool] = None

    def merge(self, **changes: Any) -> "ServiceMeta":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)


class MethodServices(BaseModel):
    """Declarative services resolved for one method, class defaults applied.

    Attributes:
        remote: Method is accessible from remote clients.
        public: Remote method does not require an authenticated caller.
        transactional: Method runs inside a transaction.
        schema_name: Optional transaction schema.
        immutable: Transaction is read only.
        asynchronous: Method runs on a worker thread.
        cron: Cron expression for scheduled methods.
        roles: Roles allowed to invoke the remote method; empty means any.
        interceptor: Application interceptor type.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    remote: bool = False
    public: bool = False
    transactional: bool = False
    schema_name: Optional[str] = None
    immutable: bool = False
    asynchronous: bool = False
    cron: Optional[str] = None
    roles: FrozenSet[str] = frozenset()
    interceptor: Optional[Type] = None

    @property
    def managed(self) -> bool:
        """Whether any service applies, that is, whether a managed method is needed."""
        return bool(
            self.remote or self.transactional or self.asynchronous or self.cron is not None or self.interceptor
        )


class SecurityContext(BaseModel):
    """Caller security state consulted by the authorization gate.

    Attributes:
        authenticated: Whether the caller is authenticated.
        principal: Optional caller identity.
        roles: Roles granted to the caller.
    """

    model_config = ConfigDict(frozen=True)

    authenticated: bool = False
    principal: Optional[str] = None
    roles: FrozenSet[str] = frozenset()

    def has_any_role(self, roles: FrozenSet[str]) -> bool:
        """Return True when the caller has at least one of the given roles."""
        return bool(self.roles & roles)


class ScopeContext(BaseModel):
    """Calling context used to select scope partitions.

    Attributes:
        session_id: Session partition key, for session scope.
        thread_id: Ident of the live thread whose partition is used; ``None`` means the current thread.
        attributes: Partition keys of custom scopes.
        security: Caller security state.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    session_id: Optional[str] = None
    thread_id: Optional[int] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    security: SecurityContext = Field(default_factory=SecurityContext)


class ResolutionContext(BaseModel):
    """Tracks the current dependency resolution stack.

    Used for circular dependency detection. One context is shared by all
    resolver calls of an outermost lookup and lives in thread-local storage.

    Attributes:
        stack: List of dependency types currently being resolved.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    stack: List[Any] = Field(
        default_factory=list,
        description="Stack of dependency types currently being resolved.",
    )

    def push(self, dependency_type: Any) -> None:
        """Add a dependency to the resolution stack.

        Args:
            dependency_type: The type being resolved.

        Raises:
            CircularDependencyError: If the type is already in the stack.
        """
        if dependency_type in self.stack:
            cycle = self.stack[self.stack.index(dependency_type) :] + [dependency_type]
            raise CircularDependencyError(cycle)
        self.stack.append(dependency_type)

    def pop(self) -> None:
        """Remove the last (most recent) dependency from the stack."""
        if self.stack:
            self.stack.pop()

    def clear(self) -> None:
        """Clear the entire resolution stack."""
        self.stack.clear()

    def is_empty(self) -> bool:
        return not self.stack


class MethodInvocation(BaseModel):
    """One call travelling through a managed method processors chain.

    Attributes:
        method: The managed method being invoked.
        instance: Target instance, never a proxy.
        args: Positional arguments.
        kwargs: Keyword arguments.
        scope_context: Calling context, if one is bound.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: Any
    instance: Any
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = Field(default_factory=dict)
    scope_context: Optional[ScopeContext] = None
