"""
reconcilekit - building blocks for reconciliation controllers.

This package provides the reconcile engine (finalizers plus an ordered
step chain), a traced object access layer, object stores, and helpers for
conditions, annotations and pod exec.
"""

from reconcilekit.apicall import ApiClient
from reconcilekit.builder import ControllerBuilder, Reconciler
from reconcilekit.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidError,
    NotFoundError,
    StoreError,
    UnavailableError,
)
from reconcilekit.finalizers import FinalizerRegistration, process_finalizer
from reconcilekit.objects import Condition, ManagedObject, ObjectKey, Resource
from reconcilekit.steps import ReconcileOutcome, ResultAction, StepResult
from reconcilekit.store import MemoryObjectStore, ObjectStore

__all__ = [
    "ApiClient",
    "ControllerBuilder",
    "Reconciler",
    "AlreadyExistsError",
    "ConflictError",
    "InvalidError",
    "NotFoundError",
    "StoreError",
    "UnavailableError",
    "FinalizerRegistration",
    "process_finalizer",
    "Condition",
    "ManagedObject",
    "ObjectKey",
    "Resource",
    "ReconcileOutcome",
    "ResultAction",
    "StepResult",
    "MemoryObjectStore",
    "ObjectStore",
]
