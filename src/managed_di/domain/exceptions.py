from typing import Any, List, Optional, Type


def _type_name(value: Any) -> str:
    return getattr(value, "__qualname__", None) or getattr(value, "__name__", None) or repr(value)


class DIException(Exception):
    """Base exception for DI-related errors."""


class ConfigurationError(DIException):
    """Raised when class descriptors or managed class metadata are not valid.

    This occurs when:
    - A descriptor misses a required type or declares a forbidden one.
    - The implementation is abstract or not a kind of the interface.
    - Declarative services are combined in a way that is not allowed.
    - No factory is registered for the requested scope or instance type.
    - A configurable instance rejects its configuration section.
    """


class CircularDependencyError(DIException):
    """Raised when a circular dependency is detected.

    Attributes:
        dependency_chain: List of types involved in the circular dependency.
    """

    def __init__(self, dependency_chain: List[Type]) -> None:
        self.dependency_chain = dependency_chain
        message = f"Circular dependency detected: {' -> '.join([_type_name(cls) for cls in dependency_chain])}"
        super().__init__(message)


class UnresolvedDependencyError(DIException):
    """Raised when no managed class, container handle or default constructor supplies a dependency.

    Attributes:
        dependency_type: The type that could not be resolved.
        requester: The type asking for the dependency, if any.
    """

    def __init__(self, dependency_type: Any, requester: Optional[Any] = None) -> None:
        self.dependency_type = dependency_type
        self.requester = requester
        message = f"Cannot resolve dependency for type: {_type_name(dependency_type)}"
        if requester is not None:
            message += f". Requested by: {_type_name(requester)}"
        super().__init__(message)


class ScopeError(DIException):
    """Raised for invalid scope operations.

    This occurs when:
    - A contextual scope has no active partition for the calling context.
    - Retiring a scope that is not registered on the container.
    """


class NoProviderError(DIException):
    """Raised when a service instance type has no installed provider.

    Attributes:
        interface_type: The service interface without provider.
    """

    def __init__(self, interface_type: Type) -> None:
        self.interface_type = interface_type
        super().__init__(f"No provider found for service: {_type_name(interface_type)}")


class AuthorizationError(DIException):
    """Raised when the security gate rejects a remote method invocation.

    Attributes:
        signature: Humanized signature of the rejected managed method.
    """

    def __init__(self, signature: str, reason: str) -> None:
        self.signature = signature
        self.reason = reason
        super().__init__(f"Access denied to {signature}: {reason}")


class InvalidArgumentsError(DIException):
    """Raised when invocation arguments do not match the managed method signature."""


class InvocationError(DIException):
    """Envelope for exceptions thrown by a managed method or its processors.

    Attributes:
        cause: The original exception.
    """

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class BugError(DIException):
    """Raised on internal inconsistencies that indicate a defect in the container."""


class ContainerClosedError(DIException):
    """Raised when an instance is requested after the container shutdown has started."""
