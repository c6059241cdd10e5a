"""Application layer - Scope factories caching managed instances."""

import threading
import weakref
from typing import Any, Dict, Hashable, List, Optional, Tuple

from managed_di.domain import (
    APPLICATION_SCOPE,
    SESSION_SCOPE,
    THREAD_SCOPE,
    InstanceScope,
    IScopeFactory,
    ScopeContext,
    ScopeError,
)


class ApplicationScopeFactory(IScopeFactory):
    """One instance per instance key for the whole container life.

    Attributes:
        _instances: Cache mapping instance keys to instances.
    """

    def __init__(self) -> None:
        self._instances: Dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    @property
    def instance_scope(self) -> InstanceScope:
        return APPLICATION_SCOPE

    @property
    def is_contextual(self) -> bool:
        return False

    def get_instance(self, key: Hashable, context: ScopeContext) -> Optional[Any]:
        return self._instances.get(key)

    def persist_instance(self, key: Hashable, context: ScopeContext, instance: Any) -> None:
        with self._lock:
            self._instances[key] = instance

    def get_cached_instances(self) -> List[Tuple[Hashable, Any]]:
        with self._lock:
            return list(self._instances.items())

    def retire(self, context: ScopeContext) -> List[Tuple[Hashable, Any]]:
        raise ScopeError("Application scope cannot be retired before container shutdown.")

    def clear(self) -> None:
        with self._lock:
            self._instances.clear()


class PartitionedScopeFactory(IScopeFactory):
    """Scope whose instances are partitioned by a key taken from the calling context.

    Only the map associating partition keys to per-partition caches is
    locked; the container serializes creation itself. Custom scopes can use
    this class directly, partitioning by a ``ScopeContext.attributes`` entry.

    Attributes:
        attribute_name: Scope context attribute holding the partition key.

    Example:
        >>> container.register_scope_factory(
        ...     PartitionedScopeFactory(InstanceScope(name="tenant"), "tenant_id")
        ... )
        >>> with container.scope(ScopeContext(attributes={"tenant_id": "acme"})):
        ...     repository = container.get_instance(TenantRepository)
    """

    def __init__(self, instance_scope: InstanceScope, attribute_name: Optional[str] = None) -> None:
        self._instance_scope = instance_scope
        self.attribute_name = attribute_name or instance_scope.name
        self._partitions: Any = self._create_partitions()
        self._lock = threading.Lock()

    def _create_partitions(self) -> Any:
        return {}

    @property
    def instance_scope(self) -> InstanceScope:
        return self._instance_scope

    @property
    def is_contextual(self) -> bool:
        return True

    def partition_key(self, context: ScopeContext) -> Hashable:
        """Return the partition key for the calling context.

        Raises:
            ScopeError: If the context has no partition key for this scope.
        """
        value = context.attributes.get(self.attribute_name)
        if value is None:
            raise ScopeError(f"No '{self.attribute_name}' attribute bound for {self._instance_scope} scope.")
        return value

    def get_instance(self, key: Hashable, context: ScopeContext) -> Optional[Any]:
        partition_key = self.partition_key(context)
        with self._lock:
            partition = self._partitions.get(partition_key)
            return None if partition is None else partition.get(key)

    def persist_instance(self, key: Hashable, context: ScopeContext, instance: Any) -> None:
        partition_key = self.partition_key(context)
        with self._lock:
            self._partitions.setdefault(partition_key, {})[key] = instance

    def get_cached_instances(self) -> List[Tuple[Hashable, Any]]:
        with self._lock:
            return [item for partition in list(self._partitions.values()) for item in partition.items()]

    def retire(self, context: ScopeContext) -> List[Tuple[Hashable, Any]]:
        partition_key = self.partition_key(context)
        with self._lock:
            partition = self._partitions.pop(partition_key, {})
        return list(partition.items())

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()


class ThreadScopeFactory(PartitionedScopeFactory):
    """One instance per instance key and live thread.

    Partitions are weakly keyed by the ``threading.Thread`` object, so a
    partition disappears with its thread and a new thread never sees the
    instances of a finished one, even when the thread ident is reused.
    Instances of finished threads are dropped without pre-destroy.
    """

    def __init__(self) -> None:
        super().__init__(THREAD_SCOPE)

    def _create_partitions(self) -> Any:
        return weakref.WeakKeyDictionary()

    def partition_key(self, context: ScopeContext) -> Hashable:
        if context.thread_id is None:
            return threading.current_thread()
        for thread in threading.enumerate():
            if thread.ident == context.thread_id:
                return thread
        raise ScopeError(f"No live thread with id {context.thread_id} for thread scope.")


class SessionScopeFactory(PartitionedScopeFactory):
    """One instance per instance key and session."""

    def __init__(self) -> None:
        super().__init__(SESSION_SCOPE)

    def partition_key(self, context: ScopeContext) -> Hashable:
        if context.session_id is None:
            raise ScopeError("Session scope requires a session bound to the calling context.")
        return context.session_id
