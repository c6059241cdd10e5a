"""Unit tests for instance factories and instance post-processors."""

from abc import ABC, abstractmethod
from unittest.mock import Mock

import pytest

from managed_di.application import ManagedContainer, ManagedProxy, unwrap_proxy
from managed_di.application.instance_factories import ServiceInstanceFactory
from managed_di.domain import (
    ClassDescriptor,
    ConfigurationError,
    ContainerClosedError,
    InstanceType,
    InvocationError,
    IRemoteFactory,
    NoProviderError,
    ScopeContext,
    inject,
)


class IMailer(ABC):
    @abstractmethod
    def send(self, to: str) -> None:
        pass


class SmtpMailer(IMailer):
    def __init__(self):
        self.sent = []

    def send(self, to: str) -> None:
        self.sent.append(to)


class Failing:
    def __init__(self):
        raise OSError("disk full")


class Settings:
    def __init__(self):
        self.values = None

    def configure(self, config):
        if "port" not in config:
            raise KeyError("port")
        self.values = config


class Clock:
    pass


class Report:
    clock: Clock = inject()

    def __init__(self):
        self.events = []

    def post_construct(self):
        self.events.append(("post_construct", self.clock is not None))


class BrokenStart:
    def post_construct(self):
        raise RuntimeError("not ready")


class HttpRemoteFactory(IRemoteFactory):
    def __init__(self):
        self.requests = []

    @property
    def protocol(self) -> str:
        return "http"

    def get_remote_instance(self, interface_type, url):
        self.requests.append((interface_type, url))
        return Mock(spec=interface_type)


class TestLocalInstanceFactory:
    """Test cases for direct instances."""

    def test_constructor_error_wrapped(self):
        """Test that constructor failures become InvocationError."""
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="failing", implementation_type=Failing)])

        with pytest.raises(InvocationError) as exc_info:
            container.get_instance(Failing)

        assert isinstance(exc_info.value.cause, OSError)


class TestProxyInstanceFactory:
    """Test cases for intercepted instances."""

    def test_instance_wrapped_in_proxy(self):
        """Test proxies around the raw instance."""
        container = ManagedContainer()
        container.configure(
            [
                ClassDescriptor(
                    name="mailer",
                    interface_type=IMailer,
                    implementation_type=SmtpMailer,
                    instance_type=InstanceType.INTERCEPTED,
                )
            ]
        )

        mailer = container.get_instance(IMailer)
        mailer.send("bob")

        assert isinstance(mailer, ManagedProxy)
        assert unwrap_proxy(mailer).sent == ["bob"]


class TestRemoteInstanceFactory:
    """Test cases for remote instances."""

    def test_remote_factory_selected_by_protocol(self):
        """Test stub creation through the registered factory."""
        remote_factory = HttpRemoteFactory()
        container = ManagedContainer()
        container.register_remote_factory(remote_factory)
        container.configure(
            [
                ClassDescriptor(
                    name="mailer",
                    interface_type=IMailer,
                    instance_type=InstanceType.REMOTE,
                    remote_url="HTTP://mail.example.com/app",
                )
            ]
        )

        mailer = container.get_instance(IMailer)

        assert isinstance(mailer, IMailer)
        assert remote_factory.requests == [(IMailer, "HTTP://mail.example.com/app")]

    def test_missing_remote_factory(self):
        """Test protocols without factory."""
        container = ManagedContainer()
        container.configure(
            [
                ClassDescriptor(
                    name="mailer",
                    interface_type=IMailer,
                    instance_type=InstanceType.REMOTE,
                    remote_url="ftp://mail.example.com/app",
                )
            ]
        )

        with pytest.raises(ConfigurationError, match="ftp"):
            container.get_instance(IMailer)

    def test_session_scoped_remote_retired(self):
        """Test closing a session holding a remote stub."""
        remote_factory = HttpRemoteFactory()
        container = ManagedContainer()
        container.register_remote_factory(remote_factory)
        container.configure(
            [
                ClassDescriptor(
                    name="mailer",
                    interface_type=IMailer,
                    instance_type=InstanceType.REMOTE,
                    remote_url="http://mail.example.com/app",
                    instance_scope="session",
                )
            ]
        )
        alice = ScopeContext(session_id="alice")
        first = container.get_instance(IMailer, alice)

        container.close_session("alice")

        assert container.get_instance(IMailer, alice) is not first
        assert len(remote_factory.requests) == 2
        container.destroy()

    def test_get_remote_instance_by_url(self):
        """Test ad hoc stubs for unmanaged interfaces."""
        remote_factory = HttpRemoteFactory()
        container = ManagedContainer()
        container.register_remote_factory(remote_factory)

        first = container.get_remote_instance("http://mail.example.com/app", IMailer)
        second = container.get_remote_instance("http://mail.example.com/app", IMailer)

        assert isinstance(first, IMailer)
        assert first is not second
        assert remote_factory.requests == [(IMailer, "http://mail.example.com/app")] * 2

    def test_get_remote_instance_unknown_protocol(self):
        """Test ad hoc stubs for protocols without factory."""
        with pytest.raises(ConfigurationError, match="ftp"):
            ManagedContainer().get_remote_instance("ftp://mail.example.com/app", IMailer)

    def test_get_remote_instance_after_destroy(self):
        """Test ad hoc stubs from a closed container."""
        container = ManagedContainer()
        container.register_remote_factory(HttpRemoteFactory())
        container.destroy()

        with pytest.raises(ContainerClosedError):
            container.get_remote_instance("http://mail.example.com/app", IMailer)


class TestServiceInstanceFactory:
    """Test cases for service instances."""

    @pytest.fixture
    def container(self):
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="mailer", interface_type=IMailer, instance_type="service")])
        yield container
        container.destroy()

    def test_entry_points_group(self):
        """Test the group name derived from the interface."""
        assert ServiceInstanceFactory.entry_points_group(IMailer) == f"{IMailer.__module__}.IMailer"

    def test_no_provider(self, container, monkeypatch):
        """Test services without installed provider."""
        monkeypatch.setattr("managed_di.application.instance_factories.metadata.entry_points", lambda group: [])

        with pytest.raises(NoProviderError):
            container.get_instance(IMailer)
        assert container.get_optional_instance(IMailer) is None

    def test_provider_class_instantiated(self, container, monkeypatch):
        """Test providers exposing a class."""
        entry_point = Mock(value="smtp:SmtpMailer")
        entry_point.load.return_value = SmtpMailer
        groups = []

        def entry_points(group):
            groups.append(group)
            return [entry_point]

        monkeypatch.setattr("managed_di.application.instance_factories.metadata.entry_points", entry_points)

        mailer = container.get_instance(IMailer)

        assert isinstance(mailer, SmtpMailer)
        assert groups == [ServiceInstanceFactory.entry_points_group(IMailer)]
        assert container.get_instance(IMailer) is mailer

    def test_provider_load_failure(self, container, monkeypatch):
        """Test providers that cannot be imported."""
        entry_point = Mock(value="missing:Mailer")
        entry_point.load.side_effect = ImportError("no module named missing")
        monkeypatch.setattr(
            "managed_di.application.instance_factories.metadata.entry_points", lambda group: [entry_point]
        )

        with pytest.raises(ConfigurationError, match="Cannot load service provider"):
            container.get_instance(IMailer)


class TestInstancePostProcessors:
    """Test cases for fields injection, configuration and post-construct."""

    def test_fields_injected_before_post_construct(self):
        """Test processors order."""
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="report", implementation_type=Report)])

        report = container.get_instance(Report)

        assert isinstance(report.clock, Clock)
        assert report.events == [("post_construct", True)]

    def test_configuration_section_passed(self):
        """Test configure() calls."""
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="settings", implementation_type=Settings, config={"port": 25})])

        assert container.get_instance(Settings).values == {"port": 25}

    def test_rejected_configuration(self):
        """Test configure() failures."""
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="settings", implementation_type=Settings, config={"host": "x"})])

        with pytest.raises(ConfigurationError, match="rejected its configuration"):
            container.get_instance(Settings)

    def test_post_construct_error_wrapped(self):
        """Test post-construct failures."""
        container = ManagedContainer()
        container.configure([ClassDescriptor(name="broken", implementation_type=BrokenStart)])

        with pytest.raises(InvocationError):
            container.get_instance(BrokenStart)
        assert container.get_managed_class(BrokenStart) is not None
