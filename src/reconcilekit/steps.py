"""
Step Chain - ordered processing steps and their results.

Steps run one after another against the loaded object. Each returns a
StepResult telling the chain to continue, requeue the whole pass (after an
optional delay) or exit until the next external trigger.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from reconcilekit.apicall import ApiClient, Logger
from reconcilekit.objects import ManagedObject

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=ManagedObject)


class ResultAction(Enum):
    """What the chain does after a step."""

    # run the next step
    CONTINUE = "Continue"
    # stop, and run the whole pass again after requeue_after
    REQUEUE = "Requeue"
    # stop; only another trigger resumes processing
    EXIT = "Exit"


@dataclass(frozen=True)
class StepResult:
    """Result of one step. A nonzero requeue_after always means REQUEUE."""

    action: ResultAction = ResultAction.CONTINUE
    requeue_after: float = 0.0

    def __post_init__(self):
        if self.requeue_after < 0:
            raise ValueError(
                f"requeue_after must not be negative, got {self.requeue_after}"
            )

    @property
    def effective_action(self) -> ResultAction:
        if self.requeue_after > 0:
            return ResultAction.REQUEUE
        return self.action

    @classmethod
    def proceed(cls) -> "StepResult":
        return cls(ResultAction.CONTINUE)

    @classmethod
    def requeue(cls, after: float = 0.0) -> "StepResult":
        return cls(ResultAction.REQUEUE, after)

    @classmethod
    def exit(cls) -> "StepResult":
        return cls(ResultAction.EXIT)


@dataclass(frozen=True)
class ReconcileOutcome:
    """
    What the scheduler should do after a reconcile pass.

    requeue=False means wait for the next external trigger.
    """

    requeue: bool = False
    requeue_after: float = 0.0


StepFn = Callable[[T, ApiClient], Awaitable[None]]
StepWithResultFn = Callable[[T, ApiClient], Awaitable[StepResult]]


def always_continue(step_fn: StepFn) -> StepWithResultFn:
    """Adapt a step without a result into one that always continues."""

    async def step(obj, client: ApiClient) -> StepResult:
        await step_fn(obj, client)
        return StepResult.proceed()

    step.__name__ = getattr(step_fn, "__name__", step.__name__)
    step.__qualname__ = getattr(step_fn, "__qualname__", step.__qualname__)
    return step


def _step_name(step: Callable) -> str:
    return getattr(step, "__qualname__", None) or repr(step)


async def run_steps(
    steps: Sequence[StepWithResultFn],
    obj: ManagedObject,
    client: ApiClient,
    log: Optional[Logger] = None,
) -> ReconcileOutcome:
    """
    Run steps in order against obj and map the first non-CONTINUE result.

    Steps are awaited strictly one at a time. Nothing is persisted between
    steps; a step that changes obj saves it through client itself.
    """
    log = log or logger

    for step in steps:
        result = await step(obj, client)
        if not isinstance(result, StepResult):
            raise TypeError(
                f"Step {_step_name(step)} returned {type(result).__name__}, "
                f"expected StepResult"
            )
        action = result.effective_action

        if action is ResultAction.CONTINUE:
            continue

        if action is ResultAction.REQUEUE:
            log.debug(
                f"Step {_step_name(step)} requested requeue of {obj.kind} "
                f"{obj.key} after {result.requeue_after}s"
            )
            return ReconcileOutcome(requeue=True, requeue_after=result.requeue_after)

        log.debug(f"Step {_step_name(step)} exited reconcile of {obj.kind} {obj.key}")
        return ReconcileOutcome()

    return ReconcileOutcome()
