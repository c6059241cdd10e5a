"""Application layer - Built-in method invocation processors.

Each processor contributes one declarative service to the managed methods it
applies to. Processors run in ascending priority order and the managed
method itself always closes the chain.
"""

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from managed_di.domain import (
    AuthorizationError,
    IContainer,
    IInvocationProcessorsChain,
    IMethodInvocationProcessor,
    InvocationError,
    InvocationPriority,
    ITransactionalResource,
    MethodInvocation,
    SecurityContext,
)

logger = logging.getLogger(__name__)


class SecurityProcessor(IMethodInvocationProcessor):
    """Authorization gate for remotely accessible methods.

    Private methods reject unauthenticated callers; methods declaring
    allowed roles also reject callers without any of them.
    """

    @property
    def priority(self) -> InvocationPriority:
        return InvocationPriority.SECURITY

    def is_applicable(self, managed_method: Any) -> bool:
        return managed_method.is_remotely_accessible()

    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        managed_method = invocation.method
        security = invocation.scope_context.security if invocation.scope_context else SecurityContext()

        if not managed_method.is_public() and not security.authenticated:
            logger.info("Reject unauthenticated access to private method %s.", managed_method.signature)
            raise AuthorizationError(managed_method.signature, "authentication required")

        roles = managed_method.get_roles()
        if roles and not security.has_any_role(roles):
            logger.info("Reject access to %s: caller has none of roles %s.", managed_method.signature, sorted(roles))
            raise AuthorizationError(managed_method.signature, f"one of roles {sorted(roles)} required")

        return chain.invoke_next_processor(invocation)


class AsynchronousProcessor(IMethodInvocationProcessor):
    """Runs the remainder of the chain on a worker thread.

    The caller gets None at once. The worker runs inside a copy of the
    caller ``contextvars`` context so the bound scope context follows the
    call. Failures are logged since nobody waits for the result.

    Attributes:
        max_workers: Size of the worker pool, created on first use.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @property
    def priority(self) -> InvocationPriority:
        return InvocationPriority.ASYNCHRONOUS

    def is_applicable(self, managed_method: Any) -> bool:
        return managed_method.is_asynchronous()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="managed-async")
            return self._executor

    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        context = contextvars.copy_context()
        self._get_executor().submit(context.run, self._run, chain, invocation)
        return None

    @staticmethod
    def _run(chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> None:
        try:
            chain.invoke_next_processor(invocation)
        except InvocationError as e:
            logger.error("Asynchronous method %s failed.", invocation.method.signature, exc_info=e.cause)
        except Exception:
            logger.exception("Asynchronous method %s failed.", invocation.method.signature)

    def close(self) -> None:
        """Wait for pending asynchronous calls and release the worker threads."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


class InterceptorProcessor(IMethodInvocationProcessor):
    """Runs application interceptors around the managed method.

    Interceptors that are managed classes are taken from the container;
    others are instantiated once and reused. ``pre_invoke`` and
    ``post_invoke`` are both optional.
    """

    def __init__(self, container: IContainer) -> None:
        self._container = container
        self._interceptors: Dict[type, Any] = {}
        self._lock = threading.Lock()

    @property
    def priority(self) -> InvocationPriority:
        return InvocationPriority.INTERCEPTOR

    def is_applicable(self, managed_method: Any) -> bool:
        return managed_method.get_interceptor_type() is not None

    def _get_interceptor(self, interceptor_type: type) -> Any:
        if self._container.get_managed_class(interceptor_type) is not None:
            return self._container.get_instance(interceptor_type)
        with self._lock:
            interceptor = self._interceptors.get(interceptor_type)
            if interceptor is None:
                interceptor = interceptor_type()
                self._interceptors[interceptor_type] = interceptor
            return interceptor

    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        managed_method = invocation.method
        interceptor = self._get_interceptor(managed_method.get_interceptor_type())

        pre_invoke = getattr(interceptor, "pre_invoke", None)
        if callable(pre_invoke):
            pre_invoke(managed_method, invocation.args)

        value = chain.invoke_next_processor(invocation)

        post_invoke = getattr(interceptor, "post_invoke", None)
        if callable(post_invoke):
            post_invoke(managed_method, invocation.args, value)
        return value


class TransactionProcessor(IMethodInvocationProcessor):
    """Executes transactional methods inside transaction boundaries.

    Mutable methods run in a read-write transaction committed on success and
    rolled back on failure; immutable methods run in a read-only one. The
    transaction session is stored on the transactional resource for the
    call duration and released when the outermost transaction closes.
    """

    def __init__(self, container: IContainer) -> None:
        self._container = container

    @property
    def priority(self) -> InvocationPriority:
        return InvocationPriority.TRANSACTION

    def is_applicable(self, managed_method: Any) -> bool:
        return managed_method.is_transactional()

    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        resource = self._container.get_instance(ITransactionalResource)
        if invocation.method.is_immutable():
            return self._execute_immutable(resource, chain, invocation)
        return self._execute_mutable(resource, chain, invocation)

    def _execute_mutable(
        self, resource: ITransactionalResource, chain: IInvocationProcessorsChain, invocation: MethodInvocation
    ) -> Any:
        managed_method = invocation.method
        transaction = resource.create_transaction(managed_method.get_transaction_schema())
        resource.store_session(transaction.get_session())
        try:
            value = chain.invoke_next_processor(invocation)
            transaction.commit()
            return value
        except Exception:
            transaction.rollback()
            logger.debug("Mutable transactional method %s failed; transaction rolled back.", managed_method.signature)
            raise
        finally:
            if transaction.close():
                resource.release_session()

    def _execute_immutable(
        self, resource: ITransactionalResource, chain: IInvocationProcessorsChain, invocation: MethodInvocation
    ) -> Any:
        managed_method = invocation.method
        transaction = resource.create_read_only_transaction(managed_method.get_transaction_schema())
        resource.store_session(transaction.get_session())
        try:
            return chain.invoke_next_processor(invocation)
        finally:
            if transaction.close():
                resource.release_session()
