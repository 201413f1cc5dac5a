"""
Controller Builder - declarative assembly of a reconcile entry point.

    reconciler = (
        ControllerBuilder(client, "Database")
        .finalizer("example.com/drop-database", drop_database)
        .step(ensure_database)
        .step_with_result(wait_until_ready)
        .build()
    )
    outcome = await reconciler(ObjectKey("default", "orders"))

Per trigger the reconciler loads the object, runs one finalizer pass and,
if no finalizer changed the object, one pass over the steps.
"""

import logging
from typing import List, Optional, Tuple

from reconcilekit.apicall import ApiClient, Logger
from reconcilekit.finalizers import FinalizeFn, FinalizerRegistration, run_finalizers
from reconcilekit.objects import ObjectKey
from reconcilekit.steps import (
    ReconcileOutcome,
    StepFn,
    StepWithResultFn,
    always_continue,
    run_steps,
)

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Immutable reconcile entry point produced by ControllerBuilder.

    Invoke once per trigger. Failures from the store, finalizers or steps
    propagate unchanged; the scheduler decides how to back off.
    """

    __slots__ = ("_kind", "_client", "_finalizers", "_steps", "_log")

    def __init__(
        self,
        kind: str,
        client: ApiClient,
        finalizers: Tuple[FinalizerRegistration, ...],
        steps: Tuple[StepWithResultFn, ...],
        log: Logger,
    ):
        self._kind = kind
        self._client = client
        self._finalizers = finalizers
        self._steps = steps
        self._log = log

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def finalizers(self) -> Tuple[str, ...]:
        return tuple(reg.finalizer for reg in self._finalizers)

    @property
    def steps(self) -> Tuple[StepWithResultFn, ...]:
        return self._steps

    async def reconcile(self, key: ObjectKey) -> ReconcileOutcome:
        """Run one reconcile pass for the object at key."""
        log = self._log

        obj = await self._client.try_get(self._kind, key)
        if obj is None:
            log.debug(f"{self._kind} {key} not found, nothing to reconcile")
            return ReconcileOutcome()

        if await run_finalizers(self._finalizers, obj, self._client, log):
            log.debug(f"Update {self._kind} {key} for finalizer and requeue")
            await self._client.update(obj)
            return ReconcileOutcome(requeue=True)

        outcome = await run_steps(self._steps, obj, self._client, log)
        log.debug(
            f"Reconciled {self._kind} {key}: requeue={outcome.requeue} "
            f"requeue_after={outcome.requeue_after}"
        )
        return outcome

    async def __call__(self, key: ObjectKey) -> ReconcileOutcome:
        return await self.reconcile(key)

    def __repr__(self) -> str:
        return (
            f"Reconciler(kind={self._kind!r}, finalizers={list(self.finalizers)}, "
            f"steps={len(self._steps)})"
        )


class ControllerBuilder:
    """
    Append-only configuration for a Reconciler.

    Finalizers and steps run in registration order.
    """

    def __init__(self, client: ApiClient, kind: str):
        if not kind:
            raise ValueError("kind must not be empty")
        self._client = client
        self._kind = kind
        self._log: Optional[Logger] = None
        self._finalizers: List[FinalizerRegistration] = []
        self._steps: List[StepWithResultFn] = []

    def with_log(self, log: Logger) -> "ControllerBuilder":
        """Send lifecycle and store trace records to log."""
        self._log = log
        return self

    def finalizer(self, finalizer: str, finalize_fn: FinalizeFn) -> "ControllerBuilder":
        """
        Register a finalizer.

        Args:
            finalizer: Token stored on the object, e.g. 'example.com/cleanup'.
            finalize_fn: Idempotent async cleanup, called as fn(obj, client).

        Raises:
            ValueError: If the token is empty or already registered.
        """
        if not finalizer:
            raise ValueError("finalizer must not be empty")
        if any(reg.finalizer == finalizer for reg in self._finalizers):
            raise ValueError(f"finalizer {finalizer!r} is already registered")

        self._finalizers.append(FinalizerRegistration(finalizer, finalize_fn))
        return self

    def step(self, step_fn: StepFn) -> "ControllerBuilder":
        """Register a step that always continues with the next one."""
        return self.step_with_result(always_continue(step_fn))

    def step_with_result(self, step_fn: StepWithResultFn) -> "ControllerBuilder":
        """Register a step returning a StepResult."""
        self._steps.append(step_fn)
        return self

    def build(self) -> Reconciler:
        """Snapshot the configuration into a Reconciler."""
        log = self._log or logger
        client = self._client.with_log(log) if self._log else self._client
        return Reconciler(
            kind=self._kind,
            client=client,
            finalizers=tuple(self._finalizers),
            steps=tuple(self._steps),
            log=log,
        )
