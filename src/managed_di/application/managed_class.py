"""Application layer - Managed class binding and validation.

A managed class is built once at boot from a class descriptor and the
metadata declared on its implementation. Every inconsistency is reported as
a ``ConfigurationError`` so a misconfigured container never starts.
"""

import inspect
import itertools
import logging
import threading
import typing
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, Final, List, Optional, Tuple, get_origin
from urllib.parse import urlparse

from pydantic import TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError

from managed_di.application.managed_method import ManagedMethod
from managed_di.application.metadata_scanner import declared_interfaces, is_interface, is_protocol, safe_type_hints
from managed_di.domain import (
    APPLICATION_SCOPE,
    LOCAL_SCOPE,
    ClassDescriptor,
    ConfigurationError,
    DependencyKind,
    DependencySlot,
    InstanceScope,
    InstanceType,
    ManagedLifeCycle,
    MethodServices,
    ServiceMeta,
)
from managed_di.domain.annotations import InjectMarker

if TYPE_CHECKING:
    from managed_di.application.container import ManagedContainer

logger = logging.getLogger(__name__)

_keys = itertools.count(1)
_keys_lock = threading.Lock()

_INJECTABLE_KINDS = (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)


def _next_key() -> int:
    with _keys_lock:
        return next(_keys)


def _is_kind_of(implementation_type: type, interface_type: type) -> bool:
    if interface_type in implementation_type.__mro__:
        return True
    if not is_protocol(interface_type):
        return False
    members = {
        name
        for klass in interface_type.__mro__
        if klass not in (object, typing.Protocol, typing.Generic)
        for name in vars(klass)
        if not name.startswith("_")
    }
    return all(hasattr(implementation_type, name) for name in members)


def _is_void(function: Callable) -> bool:
    return safe_type_hints(function).get("return", type(None)) is type(None)


class ManagedClass:
    """Validated, immutable binding of an interface to its implementation and services.

    Attributes:
        key: Unique, monotonically increasing creation key.
        container: Owning container.
        descriptor: Class descriptor the managed class was built from.
        interface_type: Lookup type.
        implementation_type: Concrete class, None for remote and service types.
        instance_type: Creation strategy.
        instance_scope: Instance life span.
        constructor: Callable creating raw instances from constructor dependencies.
        constructor_dependencies: Injectable constructor parameters.
        field_dependencies: Injectable fields.

    Example:
        >>> managed_class = ManagedClass(container, ClassDescriptor(
        ...     name="users",
        ...     interface_type=IUserService,
        ...     implementation_type=UserService,
        ...     instance_type="intercepted",
        ... ))
        >>> managed_class.get_managed_method("save").is_transactional()
        True
    """

    def __init__(self, container: "ManagedContainer", descriptor: ClassDescriptor) -> None:
        self.key = _next_key()
        self.container = container
        self.descriptor = descriptor
        self.name = descriptor.name
        self.instance_type: InstanceType = descriptor.instance_type
        self.instance_scope: InstanceScope = descriptor.instance_scope
        self.implementation_type: Optional[type] = descriptor.implementation_type
        self.interface_type: type = self._validate_descriptor()

        self.constructor: Optional[Callable[..., Any]] = None
        self.constructor_dependencies: Tuple[DependencySlot, ...] = ()
        self.field_dependencies: Tuple[DependencySlot, ...] = ()
        self._class_meta = ServiceMeta()
        self._managed_methods: Dict[str, ManagedMethod] = {}

        if self.implementation_type is not None:
            self._class_meta = container.metadata_scanner.scan_class(self.implementation_type)
            self._discover_constructor()
            self._discover_fields()
            self._apply_static_config()
            self._validate_class_services()
            self._scan_methods()

        logger.debug(
            "Managed class %s bound: %s instance type, %s scope, %d managed methods.",
            self,
            self.instance_type,
            self.instance_scope,
            len(self._managed_methods),
        )

    def _fail(self, message: str) -> ConfigurationError:
        return ConfigurationError(f"Managed class '{self.name}': {message}")

    def _validate_descriptor(self) -> type:
        descriptor = self.descriptor
        instance_type = descriptor.instance_type
        implementation_type = descriptor.implementation_type

        if instance_type.requires_implementation and implementation_type is None:
            raise self._fail(f"{instance_type} instance type requires an implementation type.")
        if not instance_type.requires_implementation and implementation_type is not None:
            raise self._fail(f"{instance_type} instance type forbids an implementation type.")
        if instance_type.requires_interface and descriptor.interface_type is None:
            raise self._fail(f"{instance_type} instance type requires an interface type.")

        interface_type = descriptor.interface_type or implementation_type
        if interface_type is None:
            raise self._fail("no interface nor implementation type declared.")
        if instance_type.requires_interface and not is_interface(interface_type):
            raise self._fail(f"{interface_type.__qualname__} is not an abstract base class or protocol.")

        if implementation_type is not None:
            if inspect.isabstract(implementation_type) or is_protocol(implementation_type):
                raise self._fail(f"implementation {implementation_type.__qualname__} is abstract.")
            if not _is_kind_of(implementation_type, interface_type):
                raise self._fail(
                    f"implementation {implementation_type.__qualname__} is not a kind of {interface_type.__qualname__}."
                )
            if issubclass(implementation_type, ManagedLifeCycle) and self.instance_scope != APPLICATION_SCOPE:
                raise self._fail("life cycle implementations must be application scoped.")
            if descriptor.config is not None and not callable(getattr(implementation_type, "configure", None)):
                raise self._fail("configuration section given but implementation has no configure() method.")

        if instance_type == InstanceType.REMOTE:
            if not descriptor.remote_url:
                raise self._fail("remote instance type requires a remote URL.")
            if not urlparse(descriptor.remote_url).scheme:
                raise self._fail(f"remote URL {descriptor.remote_url} has no protocol.")

        if self.instance_scope != LOCAL_SCOPE and self.container.get_scope_factory(self.instance_scope) is None:
            raise self._fail(f"no scope factory registered for {self.instance_scope} scope.")
        if self.container.get_instance_factory(instance_type) is None:
            raise self._fail(f"no instance factory registered for {instance_type} instance type.")
        return interface_type

    def _type_hints(self, obj: Any) -> Dict[str, Any]:
        try:
            return typing.get_type_hints(obj)
        except (NameError, TypeError) as e:
            raise self._fail(f"cannot evaluate type hints of {getattr(obj, '__qualname__', obj)}: {e}") from e

    def _constructor_slots(self, function: Callable, skip_first: bool) -> List[DependencySlot]:
        parameters = list(inspect.signature(function).parameters.values())
        if skip_first:
            parameters = parameters[1:]
        hints = self._type_hints(function)

        slots = []
        for parameter in parameters:
            if parameter.default is not inspect.Parameter.empty:
                continue
            if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            if parameter.kind not in _INJECTABLE_KINDS:
                raise self._fail(f"positional-only constructor parameter '{parameter.name}' cannot be injected.")
            if parameter.name not in hints:
                raise self._fail(f"constructor parameter '{parameter.name}' lacks type hint and has no default value.")
            slots.append(
                DependencySlot(
                    name=parameter.name,
                    dependency_type=hints[parameter.name],
                    kind=DependencyKind.CONSTRUCTOR,
                )
            )
        return slots

    def _discover_constructor(self) -> None:
        implementation_type = self.implementation_type
        candidates: List[Tuple[str, Callable, List[DependencySlot]]] = []

        if implementation_type.__init__ is not object.__init__:
            slots = self._constructor_slots(implementation_type.__init__, skip_first=True)
            candidates.append(("__init__", implementation_type, slots))

        explicit: List[Tuple[str, Callable, List[DependencySlot]]] = []
        for name, value in vars(implementation_type).items():
            if not isinstance(value, classmethod):
                continue
            meta = self.container.metadata_scanner.scan_method(implementation_type, name)
            if meta.test_constructor:
                logger.debug("Skip test constructor %s.%s.", implementation_type.__qualname__, name)
                continue
            if meta.constructor:
                bound = getattr(implementation_type, name)
                slots = self._constructor_slots(value.__func__, skip_first=True)
                explicit.append((name, bound, slots))
        candidates.extend(explicit)

        parameterized = [candidate for candidate in candidates if candidate[2]]
        if len(parameterized) > 1:
            names = ", ".join(candidate[0] for candidate in parameterized)
            raise self._fail(f"multiple parameterized constructors: {names}.")

        if parameterized:
            _, self.constructor, slots = parameterized[0]
            self.constructor_dependencies = tuple(slots)
        elif explicit:
            self.constructor = explicit[0][1]
        else:
            self.constructor = implementation_type

    def _discover_fields(self) -> None:
        markers = [
            (name, value) for name, value in vars(self.implementation_type).items() if isinstance(value, InjectMarker)
        ]
        if not markers:
            return

        hints = self._type_hints(self.implementation_type)
        slots = []
        for name, value in markers:
            hint = hints.get(name)
            if hint is ClassVar or get_origin(hint) is ClassVar:
                raise self._fail(f"static field '{name}' cannot be injected.")
            if hint is Final or get_origin(hint) is Final:
                raise self._fail(f"final field '{name}' cannot be injected.")
            dependency_type = value.dependency_type or hint
            if dependency_type is None:
                raise self._fail(f"injected field '{name}' has no type.")
            slots.append(DependencySlot(name=name, dependency_type=dependency_type, kind=DependencyKind.FIELD))
        self.field_dependencies = tuple(slots)

    def _apply_static_config(self) -> None:
        implementation_type = self.implementation_type
        hints = safe_type_hints(implementation_type)
        for name, value in self.descriptor.static_config.items():
            if not hasattr(implementation_type, name) and name not in hints:
                raise self._fail(f"static field '{name}' not found.")
            current = inspect.getattr_static(implementation_type, name, None)
            if callable(current) or isinstance(current, (property, classmethod, staticmethod, InjectMarker)):
                raise self._fail(f"'{name}' is not a static field.")

            hint = hints.get(name)
            if get_origin(hint) is ClassVar:
                args = typing.get_args(hint)
                hint = args[0] if args else None
            if hint is not None:
                try:
                    value = TypeAdapter(hint).validate_python(value)
                except (ValidationError, PydanticSchemaGenerationError) as e:
                    raise self._fail(f"invalid value for static field '{name}': {e}") from e
            setattr(implementation_type, name, value)
            logger.debug("Static field %s.%s initialized.", implementation_type.__qualname__, name)

    def _validate_class_services(self) -> None:
        meta = self._class_meta
        intercepted = self.instance_type == InstanceType.INTERCEPTED
        if meta.access is not None and not meta.remote:
            raise self._fail(f"@{meta.access} requires a remote class.")
        if meta.roles is not None and not meta.remote:
            raise self._fail("@roles_allowed requires a remote class.")
        if meta.transactional and not intercepted:
            raise self._fail("transactional class requires intercepted instance type.")
        if meta.immutable is not None and not meta.transactional:
            logger.warning(
                "Managed class %s declares %s without @transactional; ignored.", self, self._mutability(meta)
            )
        if meta.asynchronous is not None or meta.cron is not None:
            raise self._fail("@asynchronous and @cron apply to methods only.")
        if meta.interceptor is not None and not intercepted and not meta.remote:
            raise self._fail("interceptor requires intercepted instance type or remote class.")

    @staticmethod
    def _mutability(meta: ServiceMeta) -> str:
        return "@immutable" if meta.immutable else "@mutable"

    def _scan_methods(self) -> None:
        for name, value in vars(self.implementation_type).items():
            if name.startswith("_") or not inspect.isfunction(value):
                continue
            meta = self.container.metadata_scanner.scan_method(self.implementation_type, name)
            services = self._resolve_services(name, value, meta)
            if services.managed:
                self._managed_methods[name] = ManagedMethod(self, value, services, self.container.invocation_processors)

    def _resolve_services(self, name: str, function: Callable, meta: ServiceMeta) -> MethodServices:
        class_meta = self._class_meta
        method = f"{self.implementation_type.__qualname__}.{name}"
        intercepted = self.instance_type == InstanceType.INTERCEPTED

        if meta.remote is False and not class_meta.remote:
            raise self._fail(f"@local on {method} requires a remote class.")
        remote = meta.remote if meta.remote is not None else bool(class_meta.remote)
        if meta.access is not None and not remote:
            raise self._fail(f"@{meta.access} on {method} requires a remote method.")
        if meta.roles is not None and not remote:
            raise self._fail(f"@roles_allowed on {method} requires a remote method.")
        public = (meta.access or class_meta.access) == "public"
        roles = meta.roles if meta.roles is not None else (class_meta.roles or ())

        transactional = bool(meta.transactional or class_meta.transactional)
        if transactional and not intercepted:
            raise self._fail(f"transactional method {method} requires intercepted instance type.")
        schema_name = meta.schema_name if meta.transactional else class_meta.schema_name
        if meta.immutable is not None and not transactional:
            logger.warning("Method %s declares %s without @transactional; ignored.", method, self._mutability(meta))
        if meta.immutable is not None:
            immutable = meta.immutable
        else:
            # transactions are read only unless declared mutable
            immutable = class_meta.immutable is not False

        asynchronous = bool(meta.asynchronous)
        if asynchronous:
            if not _is_void(function):
                raise self._fail(f"asynchronous method {method} must not return a value.")
            if transactional:
                raise self._fail(f"asynchronous method {method} cannot be transactional.")
            if not intercepted and not remote:
                raise self._fail(f"asynchronous method {method} requires intercepted instance type or remote method.")

        if meta.cron is not None:
            if not _is_void(function):
                raise self._fail(f"cron method {method} must not return a value.")
            if remote:
                raise self._fail(f"cron method {method} cannot be remote.")
            if transactional:
                raise self._fail(f"cron method {method} cannot be transactional.")

        interceptor = meta.interceptor or class_meta.interceptor
        if interceptor is not None and not intercepted and not remote:
            raise self._fail(f"interceptor on {method} requires intercepted instance type or remote method.")

        if remote:
            self._check_overloading(name, function)

        return MethodServices(
            remote=remote,
            public=public,
            transactional=transactional,
            schema_name=schema_name if transactional else None,
            immutable=immutable if transactional else False,
            asynchronous=asynchronous,
            cron=meta.cron,
            roles=frozenset(roles),
            interceptor=interceptor,
        )

    def _check_overloading(self, name: str, function: Callable) -> None:
        method = f"{self.implementation_type.__qualname__}.{name}"
        if typing.get_overloads(function):
            raise self._fail(f"remote method {method} is overloaded.")

        shape = self._signature_shape(function)
        for interface_type in declared_interfaces(self.implementation_type):
            declared = vars(interface_type).get(name)
            if inspect.isfunction(declared) and not self._same_shape(self._signature_shape(declared), shape):
                raise self._fail(
                    f"remote method {method} overloads {interface_type.__qualname__}.{name} with a different signature."
                )

    @staticmethod
    def _signature_shape(function: Callable) -> List[Tuple[str, Any, Any]]:
        hints = safe_type_hints(function)
        return [
            (parameter.name, parameter.kind, hints.get(parameter.name))
            for parameter in list(inspect.signature(function).parameters.values())[1:]
        ]

    @staticmethod
    def _same_shape(declared: List[Tuple[str, Any, Any]], actual: List[Tuple[str, Any, Any]]) -> bool:
        if len(declared) != len(actual):
            return False
        for (declared_name, declared_kind, declared_hint), (name, kind, hint) in zip(declared, actual):
            if declared_name != name or declared_kind != kind:
                return False
            if declared_hint is not None and hint is not None and declared_hint != hint:
                return False
        return True

    @property
    def config(self) -> Optional[Dict[str, Any]]:
        return self.descriptor.config

    @property
    def remote_url(self) -> Optional[str]:
        return self.descriptor.remote_url

    @property
    def dependencies(self) -> Tuple[DependencySlot, ...]:
        return self.constructor_dependencies + self.field_dependencies

    def get_managed_method(self, name: str) -> Optional[ManagedMethod]:
        return self._managed_methods.get(name)

    def get_managed_methods(self) -> List[ManagedMethod]:
        return list(self._managed_methods.values())

    def get_remote_method(self, name: str) -> Optional[ManagedMethod]:
        """Return the remotely accessible method with the given name, if any."""
        managed_method = self._managed_methods.get(name)
        if managed_method is None or not managed_method.is_remotely_accessible():
            return None
        return managed_method

    def get_remote_methods(self) -> List[ManagedMethod]:
        return [method for method in self._managed_methods.values() if method.is_remotely_accessible()]

    def get_cron_methods(self) -> List[ManagedMethod]:
        return [method for method in self._managed_methods.values() if method.get_cron_expression() is not None]

    @property
    def is_transactional(self) -> bool:
        return bool(self._class_meta.transactional) or any(
            method.is_transactional() for method in self._managed_methods.values()
        )

    @property
    def transactional_schema(self) -> Optional[str]:
        return self._class_meta.schema_name

    @property
    def is_remotely_accessible(self) -> bool:
        return any(method.is_remotely_accessible() for method in self._managed_methods.values())

    @property
    def is_auto_instantiate(self) -> bool:
        if self.implementation_type is not None and issubclass(self.implementation_type, ManagedLifeCycle):
            return True
        return bool(self.get_cron_methods())

    def __str__(self) -> str:
        implementation = self.implementation_type or self.interface_type
        return f"{self.name}:{implementation.__qualname__}"

    def __repr__(self) -> str:
        return f"ManagedClass(key={self.key}, name={self.name!r})"
