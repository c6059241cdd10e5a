import uuid
from typing import Awaitable, Callable, Type, TypeVar

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from managed_di.application import ManagedContainer, PartitionedScopeFactory
from managed_di.domain import IContainer, InstanceScope, ScopeContext, SecurityContext

T = TypeVar("T")

REQUEST_SCOPE = InstanceScope(name="request")
REQUEST_ID_ATTRIBUTE = "request_id"


def install_request_scope(container: ManagedContainer) -> None:
    """Register the ``request`` scope: one instance per managed class and HTTP request.

    Must be called before ``configure()``. Instances are retired by
    ``ScopeContextMiddleware`` when the request completes.

    Example:
        >>> container = ManagedContainer()
        >>> install_request_scope(container)
        >>> container.configure([
        ...     ClassDescriptor(name="context", implementation_type=RequestContext, instance_scope="request"),
        ... ])
    """
    container.register_scope_factory(PartitionedScopeFactory(REQUEST_SCOPE, REQUEST_ID_ATTRIBUTE))


def create_fastapi_dependency(container: IContainer, dependency_type: Type[T]) -> Callable[[], T]:
    """Create a FastAPI Depends() callable that resolves from the container.

    The instance is looked up for the scope context bound to the request by
    ``ScopeContextMiddleware``, so session and request scoped managed classes
    resolve per caller.

    Args:
        container: The container to resolve dependencies from.
        dependency_type: The type to resolve when the dependency is called.

    Returns:
        A callable that FastAPI can use with Depends().

    Example:
        >>> get_users = create_fastapi_dependency(container, IUserService)
        >>>
        >>> @app.get("/users")
        >>> async def list_users(users: IUserService = Depends(get_users)):
        ...     return users.find_all()
    """

    def dependency() -> T:
        """Resolve the dependency from the container."""
        return container.get_instance(dependency_type)

    return dependency


def create_scoped_dependency(dependency_type: Type[T]) -> Callable[[Request], T]:
    """Create a FastAPI dependency resolving with the request container and scope context.

    Requires the ScopeContextMiddleware to be installed.

    Args:
        dependency_type: The type to resolve.

    Returns:
        A callable that resolves for the request scope context.

    Example:
        >>> app.add_middleware(ScopeContextMiddleware, container=container)
        >>>
        >>> get_cart = create_scoped_dependency(ShoppingCart)
        >>>
        >>> @app.get("/cart")
        >>> async def show_cart(cart: ShoppingCart = Depends(get_cart)):
        ...     return cart.items()
    """

    def scoped_dependency(request: Request) -> T:
        """Resolve for the request scope context."""
        if not hasattr(request.state, "di_container"):
            raise RuntimeError(
                "Request does not have a DI container. Did you forget to add ScopeContextMiddleware?"
            )
        container: IContainer = request.state.di_container
        return container.get_instance(dependency_type, request.state.scope_context)

    return scoped_dependency


def security_context_from_request(request: Request) -> SecurityContext:
    """Build a security context from Starlette authentication, when installed.

    Reads the ``user`` and ``auth`` entries that ``AuthenticationMiddleware``
    stores in the ASGI scope; without them the caller is anonymous.
    """
    user = request.scope.get("user")
    auth = request.scope.get("auth")
    if user is None or not getattr(user, "is_authenticated", False):
        return SecurityContext()
    return SecurityContext(
        authenticated=True,
        principal=getattr(user, "display_name", None) or None,
        roles=frozenset(getattr(auth, "scopes", None) or ()),
    )


class ScopeContextMiddleware(BaseHTTPMiddleware):
    """Middleware binding a scope context to each request.

    The session id comes from a cookie or, failing that, a header; every
    request also gets a unique request id partitioning the ``request`` scope.
    The container and the scope context are exposed on ``request.state`` as
    ``di_container`` and ``scope_context``. When the request scope is
    installed its instances are retired once the response is produced.

    Attributes:
        container: The container serving the application.
        session_cookie: Cookie holding the session id.
        session_header: Header holding the session id.

    Example:
        >>> container = ManagedContainer()
        >>> install_request_scope(container)
        >>> container.configure(load_descriptors("app.yaml"))
        >>>
        >>> app = FastAPI()
        >>> app.add_middleware(ScopeContextMiddleware, container=container)
    """

    def __init__(
        self,
        app: FastAPI,
        container: ManagedContainer,
        session_cookie: str = "session",
        session_header: str = "X-Session-Id",
    ):
        """Initialize the middleware.

        Args:
            app: The FastAPI/Starlette application.
            container: The container serving the application.
            session_cookie: Cookie holding the session id.
            session_header: Header holding the session id.
        """
        super().__init__(app)
        self.container = container
        self.session_cookie = session_cookie
        self.session_header = session_header

    def build_scope_context(self, request: Request) -> ScopeContext:
        session_id = request.cookies.get(self.session_cookie) or request.headers.get(self.session_header)
        return ScopeContext(
            session_id=session_id,
            attributes={REQUEST_ID_ATTRIBUTE: uuid.uuid4().hex},
            security=security_context_from_request(request),
        )

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        """Bind the request scope context and execute the endpoint.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware or endpoint handler.

        Returns:
            The response from the endpoint.
        """
        scope_context = self.build_scope_context(request)
        request.state.di_container = self.container
        request.state.scope_context = scope_context

        with self.container.scope(scope_context):
            try:
                response = await call_next(request)
                return response
            finally:
                if self.container.get_scope_factory(REQUEST_SCOPE) is not None:
                    self.container.end_scope(REQUEST_SCOPE, scope_context)