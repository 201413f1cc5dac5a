"""
Managed objects - the shape of what the engine reconciles.

The engine only relies on the ManagedObject protocol (identity, version
token, deletion marker and finalizers). Resource is the concrete object
type handled by the bundled stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ObjectKey:
    """Stable identity of an object within its kind."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str, default_namespace: str = "default") -> "ObjectKey":
        """Parse 'namespace/name' or a bare 'name'."""
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls(namespace=default_namespace, name=namespace)
        if not namespace or not name:
            raise ValueError(f"Invalid object key: {value!r}")
        return cls(namespace=namespace, name=name)


@runtime_checkable
class ManagedObject(Protocol):
    """Anything the reconciliation engine can drive."""

    kind: str
    namespace: str
    name: str
    resource_version: Optional[str]
    deletion_timestamp: Optional[datetime]
    finalizers: List[str]

    @property
    def key(self) -> ObjectKey: ...


@dataclass
class Condition:
    """A typed status condition, in the Kubernetes style."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
            "lastTransitionTime": (
                self.last_transition_time.isoformat()
                if self.last_transition_time
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        ltt = data.get("lastTransitionTime")
        return cls(
            type=data["type"],
            status=data["status"],
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            observed_generation=data.get("observedGeneration", 0),
            last_transition_time=datetime.fromisoformat(ltt) if ltt else None,
        )


@dataclass
class Resource:
    """A stored object: metadata, desired spec and observed status."""

    kind: str
    name: str
    namespace: str = "default"
    resource_version: Optional[str] = None
    generation: int = 0
    deletion_timestamp: Optional[datetime] = None
    finalizers: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    spec: Dict[str, Any] = field(default_factory=dict)
    status: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def to_dict(self) -> Dict[str, Any]:
        """Render the object the way it is shown to users."""
        return {
            "kind": self.kind,
            "metadata": {
                "namespace": self.namespace,
                "name": self.name,
                "resourceVersion": self.resource_version,
                "generation": self.generation,
                "deletionTimestamp": (
                    self.deletion_timestamp.isoformat()
                    if self.deletion_timestamp
                    else None
                ),
                "finalizers": list(self.finalizers),
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
            },
            "spec": self.spec,
            "status": {
                **self.status,
                "conditions": [c.to_dict() for c in self.conditions],
            },
        }


def contains_finalizer(obj: ManagedObject, finalizer: str) -> bool:
    return finalizer in obj.finalizers


def add_finalizer(obj: ManagedObject, finalizer: str) -> bool:
    """Append finalizer if missing. Returns True if the list changed."""
    if finalizer in obj.finalizers:
        return False
    obj.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: ManagedObject, finalizer: str) -> bool:
    """Drop every occurrence of finalizer. Returns True if the list changed."""
    if finalizer not in obj.finalizers:
        return False
    obj.finalizers[:] = [f for f in obj.finalizers if f != finalizer]
    return True
