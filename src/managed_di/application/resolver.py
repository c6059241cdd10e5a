"""Application layer - Dependency resolution."""

import inspect
import logging
from typing import TYPE_CHECKING, Any, Optional

from managed_di.application.metadata_scanner import is_protocol
from managed_di.application.proxies import ScopeProxy
from managed_di.domain import LOCAL_SCOPE, DIException, InvocationError, ResolutionContext, UnresolvedDependencyError

if TYPE_CHECKING:
    from managed_di.application.container import ManagedContainer
    from managed_di.application.managed_class import ManagedClass

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Supplies values for constructor parameters and injected fields.

    Resolution order for a needed type:

    1. A managed class: its instance from the container, or a scope proxy
       when the dependency lives in a narrower, contextual scope.
    2. The container handle, when the container is a kind of the type.
    3. A concrete class constructible without arguments: a fresh instance.

    Anything else is unresolved.

    Attributes:
        _container: Container owning the registry and scope caches.
    """

    def __init__(self, container: "ManagedContainer") -> None:
        self._container = container

    def resolve(
        self,
        requester: Optional["ManagedClass"],
        dependency_type: Any,
        context: ResolutionContext,
    ) -> Any:
        """Resolve a dependency of a managed class.

        Args:
            requester: Managed class declaring the dependency.
            dependency_type: The type to resolve.
            context: Resolution context of the current lookup.

        Returns:
            Instance, scope proxy or container handle for the type.

        Raises:
            CircularDependencyError: If the type is already being resolved.
            UnresolvedDependencyError: If nothing can supply the type.

        Example:
            >>> class UserService:
            ...     def __init__(self, repository: UserRepository):
            ...         self.repository = repository
            >>>
            >>> resolver.resolve(user_service_class, UserRepository, context)
        """
        with self._container.circular_detector.tracking(context, dependency_type):
            managed_class = self._container.get_managed_class(dependency_type)
            if managed_class is not None:
                if self.requires_scope_proxy(requester, managed_class):
                    logger.debug("Inject scope proxy of %s into %s.", managed_class, requester)
                    return ScopeProxy.create(self._container, managed_class.interface_type)
                return self._container.get_scoped_instance(managed_class)

            if isinstance(dependency_type, type) and dependency_type in type(self._container).__mro__:
                return self._container

            if self._is_default_constructible(dependency_type):
                try:
                    return dependency_type()
                except DIException:
                    raise
                except Exception as e:
                    raise InvocationError(e) from e

            raise UnresolvedDependencyError(dependency_type, requester.implementation_type if requester else None)

    def requires_scope_proxy(self, requester: Optional["ManagedClass"], dependency: "ManagedClass") -> bool:
        """Return True when the dependency must be reached through a scope proxy.

        A proxy is needed when the dependency scope follows the calling
        context and differs from the requester scope: the host would
        otherwise keep the instance of whatever context first created it.
        """
        if requester is None:
            return False
        scope = dependency.instance_scope
        if scope == LOCAL_SCOPE or scope == requester.instance_scope:
            return False
        factory = self._container.get_scope_factory(scope)
        return factory is not None and factory.is_contextual

    @staticmethod
    def _is_default_constructible(dependency_type: Any) -> bool:
        if not inspect.isclass(dependency_type) or inspect.isabstract(dependency_type) or is_protocol(dependency_type):
            return False
        try:
            inspect.signature(dependency_type).bind()
        except (TypeError, ValueError):
            return False
        return True
