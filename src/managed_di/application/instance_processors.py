"""Application layer - Post-processing of freshly created instances.

Processors run in registration order on the raw instance, before it is
cached: field injection, configuration, then post-construct.
"""

import logging
from typing import TYPE_CHECKING, Any

from managed_di.domain import ConfigurationError, DIException, IInstancePostProcessor, InvocationError

if TYPE_CHECKING:
    from managed_di.application.container import ManagedContainer
    from managed_di.application.managed_class import ManagedClass

logger = logging.getLogger(__name__)


class FieldsInjectionProcessor(IInstancePostProcessor):
    """Assigns ``inject()`` fields with dependencies resolved by the container."""

    def __init__(self, container: "ManagedContainer") -> None:
        self._container = container

    def post_process_instance(self, managed_class: "ManagedClass", instance: Any) -> None:
        for slot in managed_class.field_dependencies:
            value = self._container.resolve_dependency(managed_class, slot.dependency_type)
            setattr(instance, slot.name, value)


class ConfigurableProcessor(IInstancePostProcessor):
    """Passes the managed class configuration section to ``configure()``."""

    def post_process_instance(self, managed_class: "ManagedClass", instance: Any) -> None:
        if managed_class.config is None:
            return
        try:
            instance.configure(managed_class.config)
        except DIException:
            raise
        except Exception as e:
            raise ConfigurationError(f"Managed class {managed_class} rejected its configuration: {e}") from e
        logger.debug("Configured instance of %s.", managed_class)


class PostConstructProcessor(IInstancePostProcessor):
    """Calls ``post_construct()`` when the instance defines it."""

    def post_process_instance(self, managed_class: "ManagedClass", instance: Any) -> None:
        post_construct = getattr(instance, "post_construct", None)
        if not callable(post_construct):
            return
        try:
            post_construct()
        except DIException:
            raise
        except Exception as e:
            raise InvocationError(e) from e
