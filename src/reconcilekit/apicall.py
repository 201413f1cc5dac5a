"""
Object Access Layer - traced calls against an ObjectStore.

Each call logs a DEBUG record before and after it reaches the store, so the
log shows exactly which mutations were attempted and which succeeded.
Failures are logged and re-raised unchanged; only try_get absorbs
NotFoundError.
"""

import logging
from dataclasses import fields
from typing import Dict, List, Optional, Union

from reconcilekit.errors import NotFoundError, StoreError
from reconcilekit.objects import ObjectKey, Resource
from reconcilekit.store import ObjectStore

logger = logging.getLogger(__name__)

Logger = Union[logging.Logger, logging.LoggerAdapter]


def _describe(obj: Resource) -> str:
    return (
        f"kind:{obj.kind} namespace:{obj.namespace} name:{obj.name} "
        f"ResourceVersion={obj.resource_version}"
    )


class ApiClient:
    """Object store handle passed to finalizers and steps."""

    def __init__(self, store: ObjectStore, log: Optional[Logger] = None):
        self.store = store
        self.log = log or logger

    def with_log(self, log: Logger) -> "ApiClient":
        """Return a client sharing this store but tracing to log."""
        return ApiClient(self.store, log)

    def _failed(self, action: str, what: str, err: StoreError) -> None:
        self.log.debug(f"API: {action} {what} failed: {type(err).__name__}: {err}")

    async def get(self, kind: str, key: ObjectKey) -> Resource:
        """Fetch an object. Raises NotFoundError if it does not exist."""
        what = f"kind:{kind} namespace:{key.namespace} name:{key.name}"
        self.log.debug(f"API: Get {what}")
        try:
            obj = await self.store.get(kind, key)
        except StoreError as e:
            self._failed("Get", what, e)
            raise
        self.log.debug(f"API: Get {_describe(obj)} OK")
        return obj

    async def try_get(self, kind: str, key: ObjectKey) -> Optional[Resource]:
        """Fetch an object, returning None if it does not exist."""
        try:
            return await self.get(kind, key)
        except NotFoundError:
            return None

    async def refresh(self, obj: Resource) -> Resource:
        """
        Re-read obj from the store, overwriting it in place.

        Use before a mutating call to pick up the latest resource version.
        """
        fresh = await self.get(obj.kind, obj.key)
        for f in fields(fresh):
            setattr(obj, f.name, getattr(fresh, f.name))
        return obj

    async def update(self, obj: Resource) -> None:
        self.log.debug(f"API: Updating Object {_describe(obj)}")
        try:
            await self.store.update(obj)
        except StoreError as e:
            self._failed("Update", _describe(obj), e)
            raise
        self.log.debug(f"API: Object updated {_describe(obj)} OK")

    async def update_status(self, obj: Resource) -> None:
        self.log.debug(f"API: Updating Status {_describe(obj)}")
        try:
            await self.store.update_status(obj)
        except StoreError as e:
            self._failed("Update Status", _describe(obj), e)
            raise
        self.log.debug(f"API: Status updated {_describe(obj)} OK")

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Resource]:
        """List objects of a kind. Ordering is defined by the store."""
        what = f"kind:{kind} namespace:{namespace or '*'} labels:{labels or {}}"
        self.log.debug(f"API: List {what}")
        try:
            items = await self.store.list(kind, namespace=namespace, labels=labels)
        except StoreError as e:
            self._failed("List", what, e)
            raise

        if self.log.isEnabledFor(logging.DEBUG):
            for item in items:
                self.log.debug(
                    f"API: List Element namespace:{item.namespace} "
                    f"name:{item.name} ResourceVersion={item.resource_version}"
                )
        return items

    async def create(self, obj: Resource) -> None:
        self.log.debug(
            f"API: Creating object kind:{obj.kind} "
            f"namespace:{obj.namespace} name:{obj.name}"
        )
        try:
            await self.store.create(obj)
        except StoreError as e:
            self._failed("Create", _describe(obj), e)
            raise
        self.log.debug(f"API: Created object {_describe(obj)} OK")

    async def delete(self, obj: Resource) -> None:
        self.log.debug(
            f"API: Deleting object kind:{obj.kind} "
            f"namespace:{obj.namespace} name:{obj.name}"
        )
        try:
            await self.store.delete(obj)
        except StoreError as e:
            self._failed("Delete", _describe(obj), e)
            raise
        self.log.debug(f"API: Deleted object {_describe(obj)} OK")
