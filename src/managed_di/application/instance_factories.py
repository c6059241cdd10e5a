"""Application layer - Instance factories, one per instance type."""

import logging
import threading
from importlib import metadata
from typing import TYPE_CHECKING, Any, Dict
from urllib.parse import urlparse

from managed_di.application.proxies import ManagedProxy
from managed_di.domain import (
    ConfigurationError,
    DIException,
    IInstanceFactory,
    InstanceType,
    InvocationError,
    IRemoteFactory,
    NoProviderError,
)

if TYPE_CHECKING:
    from managed_di.application.managed_class import ManagedClass

logger = logging.getLogger(__name__)


class LocalInstanceFactory(IInstanceFactory):
    """Creates instances by calling the managed class constructor with resolved arguments."""

    @property
    def instance_type(self) -> InstanceType:
        return InstanceType.DIRECT

    def create_instance(self, managed_class: "ManagedClass", arguments: Dict[str, Any]) -> Any:
        try:
            return managed_class.constructor(**arguments)
        except DIException:
            raise
        except Exception as e:
            raise InvocationError(e) from e


class ProxyInstanceFactory(IInstanceFactory):
    """Creates instances wrapped in a managed proxy implementing the managed class interface."""

    def __init__(self) -> None:
        self._local_factory = LocalInstanceFactory()

    @property
    def instance_type(self) -> InstanceType:
        return InstanceType.INTERCEPTED

    def create_instance(self, managed_class: "ManagedClass", arguments: Dict[str, Any]) -> Any:
        instance = self._local_factory.create_instance(managed_class, arguments)
        return ManagedProxy.create(managed_class, instance)


class RemoteInstanceFactory(IInstanceFactory):
    """Delegates remote stub creation to the remote factory registered for the URL protocol.

    Attributes:
        _remote_factories: Remote factories by lower case protocol.
    """

    def __init__(self) -> None:
        self._remote_factories: Dict[str, IRemoteFactory] = {}
        self._lock = threading.Lock()

    @property
    def instance_type(self) -> InstanceType:
        return InstanceType.REMOTE

    def register_remote_factory(self, remote_factory: IRemoteFactory) -> None:
        with self._lock:
            self._remote_factories[remote_factory.protocol.lower()] = remote_factory
        logger.debug("Registered remote factory for protocol %s.", remote_factory.protocol)

    def create_instance(self, managed_class: "ManagedClass", arguments: Dict[str, Any]) -> Any:
        return self.get_remote_instance(managed_class.remote_url, managed_class.interface_type)

    def get_remote_instance(self, url: str, interface_type: type) -> Any:
        """Create a stub for the remote service at the URL, using the factory of its protocol.

        Raises:
            ConfigurationError: If no remote factory serves the URL protocol.
        """
        protocol = urlparse(url).scheme.lower()
        remote_factory = self._remote_factories.get(protocol)
        if remote_factory is None:
            raise ConfigurationError(f"No remote factory registered for protocol '{protocol}' of {url}.")
        return remote_factory.get_remote_instance(interface_type, url)


class ServiceInstanceFactory(IInstanceFactory):
    """Loads service implementations from installed entry points.

    The entry points group is the interface full name, for example
    ``myapp.mail.MailSender``. The first entry point found is loaded; a class
    is instantiated with no arguments, any other callable is called and an
    instance is used as is.
    """

    @property
    def instance_type(self) -> InstanceType:
        return InstanceType.SERVICE

    @staticmethod
    def entry_points_group(interface_type: type) -> str:
        return f"{interface_type.__module__}.{interface_type.__qualname__}"

    def create_instance(self, managed_class: "ManagedClass", arguments: Dict[str, Any]) -> Any:
        group = self.entry_points_group(managed_class.interface_type)
        entry_points = list(metadata.entry_points(group=group))
        if not entry_points:
            raise NoProviderError(managed_class.interface_type)

        entry_point = entry_points[0]
        try:
            provider = entry_point.load()
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Cannot load service provider {entry_point.value}: {e}") from e
        logger.debug("Loaded service provider %s for %s.", entry_point.value, group)

        try:
            if callable(provider):
                return provider()
            return provider
        except Exception as e:
            raise InvocationError(e) from e
