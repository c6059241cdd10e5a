"""Unit tests for the built-in method invocation processors."""

import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import pytest

from managed_di.application import ManagedContainer
from managed_di.application.invocation_processors import AsynchronousProcessor
from managed_di.domain import (
    AuthorizationError,
    ClassDescriptor,
    ConfigurationError,
    InstanceType,
    ITransaction,
    ITransactionalResource,
    ScopeContext,
    SecurityContext,
    asynchronous,
    intercepted,
    mutable,
    public,
    remote,
    roles_allowed,
    transactional,
)

EVENTS: List[str] = []


class FakeTransaction(ITransaction):
    def __init__(self, read_only: bool, schema: Optional[str]):
        self.read_only = read_only
        self.schema = schema

    def commit(self) -> None:
        EVENTS.append("commit")

    def rollback(self) -> None:
        EVENTS.append("rollback")

    def close(self) -> bool:
        EVENTS.append("close")
        return True

    def get_session(self) -> Any:
        return f"session:{self.schema}"


class FakeResource(ITransactionalResource):
    def __init__(self):
        self.session = None

    def create_transaction(self, schema: Optional[str] = None) -> ITransaction:
        EVENTS.append("begin")
        return FakeTransaction(False, schema)

    def create_read_only_transaction(self, schema: Optional[str] = None) -> ITransaction:
        EVENTS.append("begin read-only")
        return FakeTransaction(True, schema)

    def store_session(self, session: Any) -> None:
        EVENTS.append(f"store {session}")
        self.session = session

    def release_session(self) -> None:
        EVENTS.append("release")
        self.session = None


class IAccounts(ABC):
    @abstractmethod
    def balance(self, account: str) -> int:
        pass

    @abstractmethod
    def deposit(self, account: str, amount: int) -> int:
        pass

    @abstractmethod
    def withdraw(self, account: str, amount: int) -> None:
        pass


@transactional(schema="bank")
class Accounts(IAccounts):
    def __init__(self, resource: ITransactionalResource):
        self.resource = resource
        self.amounts = {}

    def balance(self, account: str) -> int:
        EVENTS.append(f"balance with {self.resource.session}")
        return self.amounts.get(account, 0)

    @mutable
    def deposit(self, account: str, amount: int) -> int:
        self.amounts[account] = self.amounts.get(account, 0) + amount
        return self.amounts[account]

    @mutable
    def withdraw(self, account: str, amount: int) -> None:
        raise ValueError("insufficient funds")


class IAdmin(ABC):
    @abstractmethod
    def status(self) -> str:
        pass

    @abstractmethod
    def shutdown(self) -> str:
        pass

    @abstractmethod
    def ping(self) -> str:
        pass


@remote
class Admin(IAdmin):
    def status(self) -> str:
        return "up"

    @roles_allowed("admin")
    def shutdown(self) -> str:
        return "stopping"

    @public
    def ping(self) -> str:
        return "pong"


class Tracer:
    instances = 0

    def __init__(self):
        Tracer.instances += 1
        self.calls = []

    def pre_invoke(self, managed_method, args):
        self.calls.append(("pre", managed_method.name, args))

    def post_invoke(self, managed_method, args, return_value):
        self.calls.append(("post", managed_method.name, return_value))


class IGreeter(ABC):
    @abstractmethod
    def greet(self, name: str) -> str:
        pass


@intercepted(Tracer)
class Greeter(IGreeter):
    def greet(self, name: str) -> str:
        return f"hello {name}"


class INotifier(ABC):
    @abstractmethod
    def notify(self, message: str) -> None:
        pass

    @abstractmethod
    def explode(self) -> None:
        pass


class Notifier(INotifier):
    def __init__(self):
        self.done = threading.Event()
        self.messages = []
        self.threads = []

    @asynchronous
    def notify(self, message: str) -> None:
        self.messages.append(message)
        self.threads.append(threading.current_thread().name)
        self.done.set()

    @asynchronous
    def explode(self) -> None:
        raise RuntimeError("failed in background")


def intercepted_descriptor(name, interface_type, implementation_type) -> ClassDescriptor:
    return ClassDescriptor(
        name=name,
        interface_type=interface_type,
        implementation_type=implementation_type,
        instance_type=InstanceType.INTERCEPTED,
    )


@pytest.fixture(autouse=True)
def clear_events():
    EVENTS.clear()
    yield
    EVENTS.clear()


class TestSecurityProcessor:
    """Test cases for the authorization gate."""

    @pytest.fixture
    def admin(self):
        container = ManagedContainer()
        container.configure([intercepted_descriptor("admin", IAdmin, Admin)])
        yield container, container.get_instance(IAdmin)
        container.destroy()

    def test_private_method_rejects_anonymous_caller(self, admin):
        """Test that remote methods are private by default."""
        _, proxy = admin

        with pytest.raises(AuthorizationError, match="authentication required"):
            proxy.status()

    def test_private_method_accepts_authenticated_caller(self, admin):
        """Test authenticated access."""
        container, proxy = admin

        with container.scope(ScopeContext(security=SecurityContext(authenticated=True))):
            assert proxy.status() == "up"

    def test_public_method_accepts_anonymous_caller(self, admin):
        """Test @public methods."""
        _, proxy = admin
        assert proxy.ping() == "pong"

    def test_roles_required(self, admin):
        """Test callers without the required role."""
        container, proxy = admin
        security = SecurityContext(authenticated=True, roles=frozenset({"user"}))

        with container.scope(ScopeContext(security=security)):
            with pytest.raises(AuthorizationError, match="roles"):
                proxy.shutdown()

    def test_roles_granted(self, admin):
        """Test callers with one of the required roles."""
        container, proxy = admin
        security = SecurityContext(authenticated=True, roles=frozenset({"user", "admin"}))

        with container.scope(ScopeContext(security=security)):
            assert proxy.shutdown() == "stopping"


class TestTransactionProcessor:
    """Test cases for transaction boundaries."""

    @pytest.fixture
    def accounts(self):
        container = ManagedContainer()
        container.configure(
            [
                ClassDescriptor(
                    name="resource",
                    interface_type=ITransactionalResource,
                    implementation_type=FakeResource,
                ),
                intercepted_descriptor("accounts", IAccounts, Accounts),
            ]
        )
        yield container.get_instance(IAccounts)
        container.destroy()

    def test_mutable_method_committed(self, accounts):
        """Test read-write transaction on success."""
        assert accounts.deposit("alice", 10) == 10
        assert EVENTS == ["begin", "store session:bank", "commit", "close", "release"]

    def test_mutable_method_rolled_back(self, accounts):
        """Test read-write transaction on failure."""
        with pytest.raises(ValueError, match="insufficient funds"):
            accounts.withdraw("alice", 10)

        assert EVENTS == ["begin", "store session:bank", "rollback", "close", "release"]

    def test_immutable_method_read_only(self, accounts):
        """Test that read only transactions are never committed."""
        assert accounts.balance("alice") == 0
        assert EVENTS == [
            "begin read-only",
            "store session:bank",
            "balance with session:bank",
            "close",
            "release",
        ]

    def test_transactional_class_requires_resource(self):
        """Test configuration without transactional resource."""
        container = ManagedContainer()
        with pytest.raises(ConfigurationError, match="ITransactionalResource"):
            container.configure([intercepted_descriptor("accounts", IAccounts, Accounts)])


class TestInterceptorProcessor:
    """Test cases for application interceptors."""

    def test_pre_and_post_invoke(self):
        """Test that interceptors run around the method."""
        container = ManagedContainer()
        container.configure([intercepted_descriptor("greeter", IGreeter, Greeter)])
        greeter = container.get_instance(IGreeter)
        before = Tracer.instances

        assert greeter.greet("bob") == "hello bob"
        assert greeter.greet("ann") == "hello ann"

        # instantiated once, then reused
        assert Tracer.instances == before + 1
        container.destroy()

    def test_managed_interceptor_taken_from_container(self):
        """Test interceptors that are managed classes."""
        container = ManagedContainer()
        container.configure(
            [
                ClassDescriptor(name="tracer", implementation_type=Tracer),
                intercepted_descriptor("greeter", IGreeter, Greeter),
            ]
        )

        container.get_instance(IGreeter).greet("bob")

        tracer = container.get_instance(Tracer)
        assert tracer.calls == [("pre", "greet", ("bob",)), ("post", "greet", "hello bob")]
        container.destroy()


class TestAsynchronousProcessor:
    """Test cases for asynchronous methods."""

    def test_runs_on_worker_thread(self):
        """Test that the caller gets None and the method runs later."""
        container = ManagedContainer()
        container.configure([intercepted_descriptor("notifier", INotifier, Notifier)])
        notifier = container.get_instance(INotifier)

        assert notifier.notify("hello") is None
        assert notifier.done.wait(timeout=5)
        assert notifier.messages == ["hello"]
        assert notifier.threads[0].startswith("managed-async")
        container.destroy()

    def test_failure_is_logged(self, caplog):
        """Test that background errors never reach the caller."""
        container = ManagedContainer()
        container.configure([intercepted_descriptor("notifier", INotifier, Notifier)])

        with caplog.at_level("ERROR"):
            assert container.get_instance(INotifier).explode() is None
            container.destroy()

        assert any("explode" in record.getMessage() for record in caplog.records)

    def test_close_without_pending_calls(self):
        """Test that closing an unused processor is harmless."""
        processor = AsynchronousProcessor(max_workers=1)
        processor.close()
        processor.close()
