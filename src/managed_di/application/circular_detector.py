"""Application layer - Circular dependency detection."""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List

from managed_di.domain import CircularDependencyError, ResolutionContext

logger = logging.getLogger(__name__)


class CircularDependencyDetector:
    """Owns the resolution context of each thread.

    The outermost lookup of a thread creates a ``ResolutionContext``; nested
    lookups on the same thread share it, so a type requested while it is
    still being built is reported as a cycle. The context is discarded as
    soon as its stack is empty and is never visible to other threads.

    Attributes:
        _local: Thread-local storage for resolution contexts.
    """

    def __init__(self) -> None:
        """Initialize the circular dependency detector with thread-local storage."""
        self._local = threading.local()

    def _get_context(self) -> ResolutionContext:
        """Get the current thread's resolution context, creating it when missing."""
        if not hasattr(self._local, "context"):
            self._local.context = ResolutionContext()
        return self._local.context

    @contextmanager
    def resolution_context(self) -> Iterator[ResolutionContext]:
        """Yield the current thread's resolution context.

        Example:
            >>> with detector.resolution_context() as context:
            ...     with detector.tracking(context, ServiceA):
            ...         build(ServiceA)
        """
        context = self._get_context()
        try:
            yield context
        finally:
            if context.is_empty() and hasattr(self._local, "context"):
                del self._local.context

    @contextmanager
    def tracking(self, context: ResolutionContext, dependency_type: Any) -> Iterator[None]:
        """Keep a dependency on the resolution stack while it is being resolved.

        Args:
            context: Resolution context of the current lookup.
            dependency_type: The type being resolved.

        Raises:
            CircularDependencyError: If the type is already in the stack.
        """
        try:
            context.push(dependency_type)
        except CircularDependencyError as e:
            logger.error("%s. Resolution trace: %s.", e, list(context.stack))
            raise
        try:
            yield
        finally:
            context.pop()

    def current_stack(self) -> List[Any]:
        """Return a copy of the current thread's resolution stack."""
        if not hasattr(self._local, "context"):
            return []
        return list(self._local.context.stack)

    def clear(self) -> None:
        """Clear the current thread's resolution context.

        Useful for testing or error recovery.
        """
        if hasattr(self._local, "context"):
            del self._local.context
