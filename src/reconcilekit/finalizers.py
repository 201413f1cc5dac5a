"""
Finalizer Lifecycle - attach finalizers and run them on deletion.

A finalizer is a named cleanup obligation. While an object is alive its
token is attached; once the object is marked for deletion the cleanup
function runs and the token is removed so the store can drop the object.

Cleanup functions may run more than once for the same object (the removal
is only durable after the caller persists it), so they must be idempotent.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from reconcilekit.apicall import ApiClient, Logger
from reconcilekit.objects import (
    ManagedObject,
    add_finalizer,
    contains_finalizer,
    remove_finalizer,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=ManagedObject)

FinalizeFn = Callable[[T, ApiClient], Awaitable[None]]


async def process_finalizer(
    obj: ManagedObject,
    finalizer: str,
    finalize_fn: Callable[[], Awaitable[None]],
) -> bool:
    """
    Apply one finalizer to obj without persisting anything.

    1. If obj is marked for deletion and carries the finalizer, await
       finalize_fn and remove the finalizer.
    2. If obj is alive and lacks the finalizer, add it.

    Exceptions from finalize_fn propagate and leave the finalizer in place.

    Returns:
        True if obj was modified and should be updated in the store.
    """
    if obj.deletion_timestamp is not None:
        if not contains_finalizer(obj, finalizer):
            return False
        await finalize_fn()
        remove_finalizer(obj, finalizer)
        return True

    return add_finalizer(obj, finalizer)


@dataclass(frozen=True)
class FinalizerRegistration(Generic[T]):
    """A finalizer token bound to its cleanup function."""

    finalizer: str
    fn: FinalizeFn

    async def run(
        self, obj: T, client: ApiClient, log: Optional[Logger] = None
    ) -> bool:
        """Process this finalizer for obj. Returns True if obj was mutated."""
        log = log or logger

        async def finalize() -> None:
            log.debug(
                f"{obj.kind} {obj.key} marked for deletion, "
                f"running finalizer {self.finalizer}"
            )
            await self.fn(obj, client)

        deleting = obj.deletion_timestamp is not None
        mutated = await process_finalizer(obj, self.finalizer, finalize)
        if mutated and deleting:
            log.debug(f"Removed finalizer {self.finalizer} from {obj.kind} {obj.key}")
        elif mutated:
            log.debug(f"Added finalizer {self.finalizer} to {obj.kind} {obj.key}")
        return mutated


async def run_finalizers(
    registrations: Sequence[FinalizerRegistration],
    obj: ManagedObject,
    client: ApiClient,
    log: Optional[Logger] = None,
) -> bool:
    """
    Run registrations in order, stopping at the first that mutates obj.

    The caller must persist obj and wait for the next trigger before the
    remaining finalizers are evaluated, so the stored finalizer list always
    matches what has been attempted.

    Returns:
        True if obj was mutated.
    """
    for registration in registrations:
        if await registration.run(obj, client, log):
            return True
    return False
