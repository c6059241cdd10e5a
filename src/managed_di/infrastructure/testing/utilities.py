from typing import Any, Dict, Iterable, Optional, Tuple, Type, TypeVar

from managed_di.application import ManagedClass, ManagedContainer
from managed_di.domain import ClassDescriptor, ScopeContext, SecurityContext

T = TypeVar("T")


class TestContainer(ManagedContainer):
    """Managed container for testing with instance override capabilities.

    Overrides replace the instance of a managed interface for every lookup
    and every injection, without touching the managed class bindings. The
    container is destroyed when used as a context manager.

    This is useful for:
    - Mocking external services (databases, APIs, etc.)
    - Replacing implementations with test doubles
    - Isolating tests from shared state

    Attributes:
        _overrides: Override instances by interface type.

    Example:
        >>> def test_user_service():
        ...     with TestContainer() as container:
        ...         container.configure(descriptors)
        ...         mock_mail = MockMailSender()
        ...         container.mock_instance(MailSender, mock_mail)
        ...
        ...         # UserService gets the mocked MailSender
        ...         service = container.get_instance(IUserService)
        ...         service.register(user)
        ...
        ...         assert mock_mail.send_called
    """

    __test__ = False  # Tell pytest not to collect this class as a test

    def __init__(self, max_async_workers: int = 1) -> None:
        """Initialize the test container.

        Args:
            max_async_workers: Worker threads for asynchronous methods.
        """
        super().__init__(max_async_workers=max_async_workers)
        self._overrides: Dict[Any, Any] = {}

    def mock_instance(self, interface_type: Type[T], mock_instance: T) -> None:
        """Replace the instance of a managed interface with a mock.

        The interface must be configured, so that dependents keep resolving
        it through the regular scope rules.

        Args:
            interface_type: The managed interface to mock.
            mock_instance: The mock instance to return.

        Raises:
            KeyError: If the interface is not managed by this container.

        Example:
            >>> container.mock_instance(Repository, Mock(spec=Repository))
            >>> service = container.get_instance(IService)
            >>> assert service.repository is mock
        """
        if not self.is_managed_class(interface_type):
            raise KeyError(f"{interface_type!r} is not a managed class of this container.")
        self._overrides[interface_type] = mock_instance

    def get_scoped_instance(self, managed_class: ManagedClass, instance_name: Optional[str] = None) -> Any:
        if managed_class.interface_type in self._overrides:
            return self._overrides[managed_class.interface_type]
        return super().get_scoped_instance(managed_class, instance_name)

    def reset_overrides(self) -> None:
        """Remove all overrides.

        Useful for cleaning up between test cases.
        """
        self._overrides.clear()

    def __enter__(self) -> "TestContainer":
        """Context manager entry - returns self."""
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        """Context manager exit - drop overrides and destroy the container."""
        self.reset_overrides()
        return super().__exit__(exc_type, exc_value, traceback)


def create_mock_container(
    descriptors: Iterable[ClassDescriptor] = (), *mocks: Tuple[Type, Any]
) -> TestContainer:
    """Create a configured test container with pre-installed mocks.

    Convenience function for quickly setting up a test container with
    multiple mocked dependencies.

    Args:
        descriptors: Class descriptors to configure.
        *mocks: Tuples of (interface_type, mock_instance).

    Returns:
        TestContainer with mocked dependencies.

    Example:
        >>> container = create_mock_container(
        ...     descriptors,
        ...     (Repository, mock_repository),
        ...     (MailSender, mock_mail),
        ... )
        >>> service = container.get_instance(IService)
    """
    container = TestContainer()
    container.configure(descriptors)

    for interface_type, mock_instance in mocks:
        container.mock_instance(interface_type, mock_instance)

    return container


class MockScope:
    """Context manager binding a calling context for scoped testing.

    Binds a scope context with the given session and security state and, on
    exit, retires the session partition so session scoped instances get
    their pre-destroy hooks.

    Example:
        >>> with MockScope(container, session_id="alice") as scope_context:
        ...     cart = container.get_instance(ShoppingCart)
        ...     cart.add(item)
        ...
        ... # Session instances retired here
    """

    def __init__(
        self,
        container: ManagedContainer,
        session_id: Optional[str] = None,
        security: Optional[SecurityContext] = None,
        **attributes: Any,
    ) -> None:
        """Initialize the mock scope.

        Args:
            container: The container to bind the context on.
            session_id: Session id of the context.
            security: Caller security state; anonymous when omitted.
            **attributes: Partition keys of custom scopes.
        """
        self._container = container
        self.scope_context = ScopeContext(
            session_id=session_id,
            attributes=attributes,
            security=security or SecurityContext(),
        )
        self._binding = None

    def __enter__(self) -> ScopeContext:
        """Bind the scope context.

        Returns:
            The bound scope context.
        """
        self._binding = self._container.scope(self.scope_context)
        return self._binding.__enter__()

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        """Unbind the scope context and retire its session."""
        if self._binding is not None:
            self._binding.__exit__(exc_type, exc_value, traceback)
            self._binding = None
        if self.scope_context.session_id is not None and not self._container.is_destroyed:
            self._container.close_session(self.scope_context.session_id)
        return False
