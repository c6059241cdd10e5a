"""Application layer - Managed and scope proxies."""

import inspect
import logging
import threading
import types
from typing import TYPE_CHECKING, Any, Callable, Dict, Tuple, Type

from managed_di.domain import AuthorizationError, DIException, IContainer, InvocationError

if TYPE_CHECKING:
    from managed_di.application.managed_class import ManagedClass

logger = logging.getLogger(__name__)

_proxy_types: Dict[Tuple[type, type], type] = {}
_proxy_types_lock = threading.Lock()


def _method_forwarder(name: str, function: Callable) -> Callable:
    def forwarder(self: Any, *args: Any, **kwargs: Any) -> Any:
        return self._proxy_invoke(name, args, kwargs)

    # functools.wraps would copy __isabstractmethod__ as well
    forwarder.__name__ = function.__name__
    forwarder.__qualname__ = function.__qualname__
    forwarder.__doc__ = function.__doc__
    return forwarder


def _attribute_forwarder(name: str) -> property:
    def getter(self: Any) -> Any:
        return self._proxy_get(name)

    def setter(self: Any, value: Any) -> None:
        self._proxy_set(name, value)

    return property(getter, setter)


def build_proxy_type(base: type, target_type: type) -> type:
    """Return a subclass of ``base`` and ``target_type`` forwarding the target public members.

    Public functions become calls to ``base._proxy_invoke`` and other public
    attributes become properties backed by ``_proxy_get`` / ``_proxy_set``,
    so the proxy passes ``isinstance`` checks against the target type.
    Generated types are cached. When the target type cannot be subclassed
    the plain ``base`` is returned.
    """
    cache_key = (base, target_type)
    with _proxy_types_lock:
        proxy_type = _proxy_types.get(cache_key)
        if proxy_type is not None:
            return proxy_type

        namespace: Dict[str, Any] = {}
        for klass in reversed(target_type.__mro__):
            if klass is object:
                continue
            for name, value in vars(klass).items():
                if name.startswith("_") or isinstance(value, (classmethod, staticmethod)):
                    continue
                if inspect.isfunction(value):
                    namespace[name] = _method_forwarder(name, value)
                else:
                    namespace[name] = _attribute_forwarder(name)

        try:
            proxy_type = types.new_class(
                f"{target_type.__name__}{base.__name__}",
                (base, target_type),
                exec_body=lambda ns: ns.update(namespace, __module__=target_type.__module__),
            )
        except TypeError:
            logger.debug("Cannot subclass %s; using plain %s.", target_type.__qualname__, base.__name__)
            proxy_type = base
        _proxy_types[cache_key] = proxy_type
        return proxy_type


class ManagedProxy:
    """Dispatch point routing calls on an intercepted instance through its managed methods.

    Methods with a managed method run the invocation processors chain;
    everything else is delegated straight to the wrapped instance.
    Invocation errors are unwrapped so callers see the original exception.

    Attributes:
        _managed_class: Managed class of the wrapped instance.
        _managed_instance: The raw instance.
    """

    def __init__(self, managed_class: "ManagedClass", instance: Any) -> None:
        object.__setattr__(self, "_managed_class", managed_class)
        object.__setattr__(self, "_managed_instance", instance)

    @classmethod
    def create(cls, managed_class: "ManagedClass", instance: Any) -> "ManagedProxy":
        """Wrap an instance into a proxy implementing the managed class interface."""
        proxy_type = build_proxy_type(cls, managed_class.interface_type)
        return proxy_type(managed_class, instance)

    def _proxy_invoke(self, name: str, args: tuple, kwargs: Dict[str, Any]) -> Any:
        managed_method = self._managed_class.get_managed_method(name)
        if managed_method is None:
            return getattr(self._managed_instance, name)(*args, **kwargs)

        try:
            return managed_method.invoke(self._managed_instance, *args, **kwargs)
        except AuthorizationError:
            raise
        except InvocationError as e:
            error = e
        except DIException:
            logger.error("Error on method invocation %s.", managed_method.signature, exc_info=True)
            raise
        logger.error("Error on method invocation %s.", managed_method.signature, exc_info=error.cause)
        raise error.cause

    def _proxy_get(self, name: str) -> Any:
        return getattr(self._managed_instance, name)

    def _proxy_set(self, name: str, value: Any) -> None:
        setattr(self._managed_instance, name, value)

    def __getattr__(self, name: str) -> Any:
        value = getattr(self._managed_instance, name)
        if callable(value) and self._managed_class.get_managed_method(name) is not None:
            return lambda *args, **kwargs: self._proxy_invoke(name, args, kwargs)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._managed_instance, name, value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} for {self._managed_instance!r}>"


class ScopeProxy:
    """Stands in for a narrower scoped instance injected into a wider scoped one.

    Every access looks the instance up again for the current scope context,
    so the host always talks to the instance of the calling session, thread
    or custom partition. The resolved instance is never cached.

    Attributes:
        _container: Container used for lookups.
        _interface_type: Lookup type of the proxied managed class.
    """

    def __init__(self, container: IContainer, interface_type: Type) -> None:
        object.__setattr__(self, "_container", container)
        object.__setattr__(self, "_interface_type", interface_type)

    @classmethod
    def create(cls, container: IContainer, interface_type: Type) -> "ScopeProxy":
        proxy_type = build_proxy_type(cls, interface_type)
        return proxy_type(container, interface_type)

    def _scope_proxy_target(self) -> Any:
        return self._container.get_instance(self._interface_type)

    def _proxy_invoke(self, name: str, args: tuple, kwargs: Dict[str, Any]) -> Any:
        return getattr(self._scope_proxy_target(), name)(*args, **kwargs)

    def _proxy_get(self, name: str) -> Any:
        return getattr(self._scope_proxy_target(), name)

    def _proxy_set(self, name: str, value: Any) -> None:
        setattr(self._scope_proxy_target(), name, value)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._scope_proxy_target(), name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._scope_proxy_target(), name, value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} for {self._interface_type.__qualname__}>"


def unwrap_proxy(instance: Any) -> Any:
    """Return the raw instance behind a managed proxy, or the argument itself."""
    if isinstance(instance, ManagedProxy):
        return object.__getattribute__(instance, "_managed_instance")
    return instance
