from enum import Enum, IntEnum


class InstanceType(str, Enum):
    """Defines how the container creates instances of a managed class.

    Attributes:
        DIRECT: Plain instance created by invoking the implementation constructor.
        INTERCEPTED: Instance wrapped in a managed proxy that routes calls through
            the method invocation processors chain.
        REMOTE: Client-side stub for a class deployed on another host.
        SERVICE: Implementation loaded from an external provider (entry points).
    """

    DIRECT = "direct"
    INTERCEPTED = "intercepted"
    REMOTE = "remote"
    SERVICE = "service"

    def __str__(self) -> str:
        return self.value

    @property
    def requires_interface(self) -> bool:
        """Whether the managed class must declare an interface contract."""
        return self in (InstanceType.INTERCEPTED, InstanceType.REMOTE)

    @property
    def requires_implementation(self) -> bool:
        """Whether the managed class must declare an implementation type."""
        return self in (InstanceType.DIRECT, InstanceType.INTERCEPTED)


class InvocationPriority(IntEnum):
    """Execution order of method invocation processors, lowest first.

    Attributes:
        SECURITY: Authorization gate for remotely accessible methods.
        ASYNCHRONOUS: Hands the rest of the chain over to a worker thread.
        INTERCEPTOR: Application defined pre and post invocation hooks.
        TRANSACTION: Transaction boundaries for transactional methods.
        METHOD: The managed method itself, always the chain terminal.
    """

    SECURITY = 0
    ASYNCHRONOUS = 1
    INTERCEPTOR = 2
    TRANSACTION = 3
    METHOD = 4


class DependencyKind(str, Enum):
    """Where a dependency is injected into a managed instance."""

    CONSTRUCTOR = "constructor"
    FIELD = "field"

    def __str__(self) -> str:
        return self.value
