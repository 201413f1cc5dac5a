"""
Object Store - Contract for the remote store reconcilers operate against.

Stores key objects by (kind, namespace/name) and guard writes with an
opaque resource version (optimistic concurrency). Deletion follows the
Kubernetes model: deleting an object that still carries finalizers only
marks it, and the object disappears once an update clears its last
finalizer.
"""

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from reconcilekit.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    NotFoundError,
)
from reconcilekit.objects import ObjectKey, Resource

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """
    Abstract base class for object stores.

    Every method raises a StoreError subclass on failure: NotFoundError,
    ConflictError (stale resource version), AlreadyExistsError,
    UnavailableError or InvalidError.
    """

    @abstractmethod
    async def get(self, kind: str, key: ObjectKey) -> Resource:
        """Fetch a single object."""
        pass

    @abstractmethod
    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Resource]:
        """
        List objects of a kind.

        Args:
            kind: Object kind.
            namespace: Restrict to one namespace (None = all namespaces).
            labels: Only return objects carrying all of these labels.
        """
        pass

    @abstractmethod
    async def create(self, obj: Resource) -> None:
        """Store a new object. Sets resource_version on obj."""
        pass

    @abstractmethod
    async def update(self, obj: Resource) -> None:
        """Persist metadata and spec. Sets the new resource_version on obj."""
        pass

    @abstractmethod
    async def update_status(self, obj: Resource) -> None:
        """Persist status and conditions only. Sets the new resource_version."""
        pass

    @abstractmethod
    async def delete(self, obj: Resource) -> None:
        """Delete obj, or mark it for deletion while finalizers remain."""
        pass


class MemoryObjectStore(ObjectStore):
    """
    In-process ObjectStore.

    Holds deep copies, so callers never share state with the store, exactly
    as with a remote store.
    """

    def __init__(self):
        self._objects: Dict[Tuple[str, str, str], Resource] = {}
        self._versions = itertools.count(1)

    @staticmethod
    def _index(kind: str, key: ObjectKey) -> Tuple[str, str, str]:
        return (kind, key.namespace, key.name)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _current(self, obj: Resource) -> Resource:
        stored = self._objects.get(self._index(obj.kind, obj.key))
        if stored is None:
            raise NotFoundError(
                f"{obj.kind} {obj.key} not found", kind=obj.kind, key=obj.key
            )
        if obj.resource_version != stored.resource_version:
            raise ConflictError(
                f"{obj.kind} {obj.key} has been modified: resource version "
                f"{obj.resource_version} is stale (current "
                f"{stored.resource_version})",
                kind=obj.kind,
                key=obj.key,
            )
        return stored

    async def get(self, kind: str, key: ObjectKey) -> Resource:
        stored = self._objects.get(self._index(kind, key))
        if stored is None:
            raise NotFoundError(f"{kind} {key} not found", kind=kind, key=key)
        return copy.deepcopy(stored)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Resource]:
        labels = labels or {}
        return [
            copy.deepcopy(obj)
            for (obj_kind, obj_namespace, _), obj in self._objects.items()
            if obj_kind == kind
            and (namespace is None or obj_namespace == namespace)
            and all(obj.labels.get(k) == v for k, v in labels.items())
        ]

    async def create(self, obj: Resource) -> None:
        if not obj.name:
            raise InvalidError("Object name must not be empty", kind=obj.kind)
        index = self._index(obj.kind, obj.key)
        if index in self._objects:
            raise AlreadyExistsError(
                f"{obj.kind} {obj.key} already exists", kind=obj.kind, key=obj.key
            )
        obj.resource_version = self._next_version()
        obj.generation = 1
        obj.deletion_timestamp = None
        self._objects[index] = copy.deepcopy(obj)
        logger.debug(f"Stored {obj.kind} {obj.key} at version {obj.resource_version}")

    async def update(self, obj: Resource) -> None:
        stored = self._current(obj)
        if obj.spec != stored.spec:
            obj.generation = stored.generation + 1
        else:
            obj.generation = stored.generation
        # deletion marker and status are not writable through update
        obj.deletion_timestamp = stored.deletion_timestamp
        obj.status = copy.deepcopy(stored.status)
        obj.conditions = copy.deepcopy(stored.conditions)
        obj.resource_version = self._next_version()

        index = self._index(obj.kind, obj.key)
        if obj.deletion_timestamp is not None and not obj.finalizers:
            del self._objects[index]
            logger.debug(f"Removed {obj.kind} {obj.key}: finalizers cleared")
            return
        self._objects[index] = copy.deepcopy(obj)

    async def update_status(self, obj: Resource) -> None:
        stored = self._current(obj)
        stored.status = copy.deepcopy(obj.status)
        stored.conditions = copy.deepcopy(obj.conditions)
        stored.resource_version = self._next_version()
        obj.resource_version = stored.resource_version

    async def delete(self, obj: Resource) -> None:
        index = self._index(obj.kind, obj.key)
        stored = self._objects.get(index)
        if stored is None:
            raise NotFoundError(
                f"{obj.kind} {obj.key} not found", kind=obj.kind, key=obj.key
            )
        if not stored.finalizers:
            del self._objects[index]
            return
        if stored.deletion_timestamp is None:
            stored.deletion_timestamp = datetime.now(timezone.utc)
            stored.resource_version = self._next_version()
        obj.deletion_timestamp = stored.deletion_timestamp
        obj.resource_version = stored.resource_version
