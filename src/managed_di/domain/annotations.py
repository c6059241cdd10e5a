"""Decorators declaring services on managed classes and methods.

Decorators only record metadata; the container reads it back with a
metadata scanner when the managed class is built.

Example:
    >>> @transactional
    ... class UserService(IUserService):
    ...     repository: Repository = inject()
    ...
    ...     @mutable
    ...     def save(self, user: User) -> None:
    ...         self.repository.save(user)
"""

from typing import Any, Callable, Optional, Type, TypeVar

from managed_di.domain.models import ServiceMeta

META_ATTRIBUTE = "__managed_meta__"

F = TypeVar("F")


def _target(obj: Any) -> Any:
    if isinstance(obj, (classmethod, staticmethod)):
        return obj.__func__
    return obj


def get_meta(obj: Any) -> ServiceMeta:
    """Return metadata declared directly on a class or function.

    For classes only the class own namespace is consulted, so metadata is
    never inherited from superclasses.
    """
    obj = _target(obj)
    if isinstance(obj, type):
        meta = vars(obj).get(META_ATTRIBUTE)
    else:
        meta = getattr(obj, META_ATTRIBUTE, None)
    return meta if isinstance(meta, ServiceMeta) else ServiceMeta()


def _annotate(obj: F, **changes: Any) -> F:
    target = _target(obj)
    setattr(target, META_ATTRIBUTE, get_meta(target).merge(**changes))
    return obj


def remote(obj: F) -> F:
    """Make a class or method accessible to remote clients."""
    return _annotate(obj, remote=True)


def local(obj: F) -> F:
    """Exclude a method from its remote class."""
    return _annotate(obj, remote=False)


def public(obj: F) -> F:
    """Allow unauthenticated access to a remote class or method."""
    return _annotate(obj, access="public")


def private(obj: F) -> F:
    """Require an authenticated caller for a remote class or method."""
    return _annotate(obj, access="private")


def transactional(obj: Any = None, *, schema: Optional[str] = None) -> Any:
    """Run a class methods or a single method inside a transaction.

    Usable bare, ``@transactional``, or with a schema, ``@transactional(schema="sales")``.
    Transactions are read only unless the method or class is ``@mutable``.
    """

    def decorator(target: F) -> F:
        return _annotate(target, transactional=True, schema_name=schema or None)

    if obj is None:
        return decorator
    return decorator(obj)


def immutable(obj: F) -> F:
    """Run transactional methods in a read only transaction."""
    return _annotate(obj, immutable=True)


def mutable(obj: F) -> F:
    """Run transactional methods in a read-write transaction."""
    return _annotate(obj, immutable=False)


def asynchronous(obj: F) -> F:
    """Execute a method on a worker thread; the caller gets None immediately."""
    return _annotate(obj, asynchronous=True)


def cron(expression: str) -> Callable[[F], F]:
    """Record a cron expression for a scheduled method."""

    def decorator(obj: F) -> F:
        return _annotate(obj, cron=expression)

    return decorator


def roles_allowed(*roles: str) -> Callable[[F], F]:
    """Restrict a remote class or method to callers having one of the roles."""

    def decorator(obj: F) -> F:
        return _annotate(obj, roles=tuple(roles))

    return decorator


def intercepted(interceptor: Type) -> Callable[[F], F]:
    """Attach an application interceptor to a class or method."""

    def decorator(obj: F) -> F:
        return _annotate(obj, interceptor=interceptor)

    return decorator


def constructor(obj: F) -> F:
    """Mark a classmethod as the constructor used by the container."""
    return _annotate(obj, constructor=True)


def test_constructor(obj: F) -> F:
    """Mark a classmethod as test only; it is never used by the container."""
    return _annotate(obj, test_constructor=True)


test_constructor.__test__ = False  # type: ignore[attr-defined]


class InjectMarker:
    """Class attribute placeholder for a dependency injected after construction.

    Attributes:
        dependency_type: Explicit dependency type, or None to use the annotation.
    """

    def __init__(self, dependency_type: Optional[Type] = None) -> None:
        self.dependency_type = dependency_type

    def __repr__(self) -> str:
        return f"inject({getattr(self.dependency_type, '__name__', '')})"


def inject(dependency_type: Optional[Type] = None) -> Any:
    """Declare an injected field.

    Example:
        >>> class Service:
        ...     repository: Repository = inject()
        ...     clock = inject(Clock)
    """
    return InjectMarker(dependency_type)
