"""Conversion of pipeline run objects to record payloads and statuses."""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

CONDITION_SUCCEEDED = "Succeeded"
CONDITION_READY = "Ready"


class RecordStatus(enum.IntEnum):
    """General status of a record."""

    UNKNOWN = 0
    SUCCESS = 1
    FAILURE = 2
    TIMEOUT = 3
    CANCELLED = 4


@dataclass
class Condition:
    """A status condition of a run."""

    type: str
    status: str = ""
    severity: str = ""
    last_transition_time: str = ""
    reason: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            severity=data.get("severity", ""),
            last_transition_time=data.get("lastTransitionTime", "") or "",
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )

    def to_dict(self) -> dict[str, str]:
        out = {"type": self.type, "status": self.status}
        optional = (
            ("severity", self.severity),
            ("lastTransitionTime", self.last_transition_time),
            ("reason", self.reason),
            ("message", self.message),
        )
        out.update((key, value) for key, value in optional if value)
        return out


class ConditionAccessor(Protocol):
    def get_condition(self, condition_type: str) -> Optional[Condition]: ...


@dataclass(frozen=True)
class GroupVersionKind:
    """API group, version and kind of an object."""

    group: str = ""
    version: str = ""
    kind: str = ""

    def empty(self) -> bool:
        return not (self.group or self.version or self.kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def to_api_version_and_kind(self) -> tuple[str, str]:
        return self.api_version, self.kind

    @classmethod
    def from_api_version_and_kind(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """Parse ``group/version``; an unparsable version keeps only the kind."""
        if not api_version:
            return cls(kind=kind)
        parts = api_version.split("/")
        if len(parts) == 1:
            return cls(version=parts[0], kind=kind)
        if len(parts) == 2:
            return cls(group=parts[0], version=parts[1], kind=kind)
        return cls(kind=kind)

    def __str__(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}"


@dataclass
class AnyMessage:
    """A typed payload: a type name and its serialized value."""

    type: str = ""
    value: bytes = b""


def _plain(value: Any) -> Any:
    if isinstance(value, Condition):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


@dataclass
class _KubeObject:
    api_version: str = ""
    kind: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    def group_version_kind(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version_and_kind(self.api_version, self.kind)

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for entry in self.status.get("conditions", ()):
            cond = entry if isinstance(entry, Condition) else Condition.from_dict(entry)
            if cond.type == condition_type:
                return cond
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.kind:
            out["kind"] = self.kind
        if self.api_version:
            out["apiVersion"] = self.api_version
        out["metadata"] = _plain(self.metadata)
        out["spec"] = _plain(self.spec)
        out["status"] = _plain(self.status)
        return out


@dataclass
class TaskRun(_KubeObject):
    """A task run object."""


@dataclass
class PipelineRun(_KubeObject):
    """A pipeline run object."""


_SCHEME: dict[type, GroupVersionKind] = {
    TaskRun: GroupVersionKind("tekton.dev", "v1", "TaskRun"),
    PipelineRun: GroupVersionKind("tekton.dev", "v1", "PipelineRun"),
}


def _declared_gvk(obj: Any) -> GroupVersionKind:
    if isinstance(obj, _KubeObject):
        return obj.group_version_kind()
    if isinstance(obj, Mapping):
        return GroupVersionKind.from_api_version_and_kind(
            obj.get("apiVersion", "") or "", obj.get("kind", "") or ""
        )
    return GroupVersionKind()


def infer_gvk(obj: Any) -> GroupVersionKind:
    """Infer the kind of ``obj`` from the known scheme, or from a mapping's own fields."""
    if isinstance(obj, Mapping):
        gvk = _declared_gvk(obj)
        if not gvk.kind:
            raise ValueError("Object 'Kind' is missing in unstructured object")
        if not gvk.version:
            raise ValueError("Object 'apiVersion' is missing in unstructured object")
        return gvk
    gvk = _SCHEME.get(type(obj))
    if gvk is None:
        raise ValueError("could not determine GroupVersionKind for object")
    return gvk


def type_name(obj: Any) -> str:
    """Return ``<apiVersion>.<kind>`` for ``obj``, or ``""`` if it cannot be told."""
    gvk = _declared_gvk(obj)
    if gvk.empty():
        try:
            gvk = infer_gvk(obj)
        except ValueError:
            return ""
        if gvk.empty():
            return ""
    version, kind = gvk.to_api_version_and_kind()
    return f"{version}.{kind}"


def to_proto(obj: Any) -> Optional[AnyMessage]:
    """Serialize ``obj`` to JSON wrapped with its type name; ``None`` stays ``None``."""
    if obj is None:
        return None
    document = obj.to_dict() if isinstance(obj, _KubeObject) else _plain(obj)
    value = json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode()
    return AnyMessage(type=type_name(obj), value=value)


_TASKRUN_REASONS = {
    "Succeeded": RecordStatus.SUCCESS,
    "Failed": RecordStatus.FAILURE,
    "TaskRunTimeout": RecordStatus.TIMEOUT,
    "TaskRunCancelled": RecordStatus.CANCELLED,
    "Running": RecordStatus.UNKNOWN,
    "Started": RecordStatus.UNKNOWN,
}

_PIPELINERUN_REASONS = {
    "Succeeded": RecordStatus.SUCCESS,
    "Completed": RecordStatus.SUCCESS,
    "Failed": RecordStatus.FAILURE,
    "PipelineRunTimeout": RecordStatus.TIMEOUT,
    "Cancelled": RecordStatus.CANCELLED,
    "Running": RecordStatus.UNKNOWN,
    "Started": RecordStatus.UNKNOWN,
    "PipelineRunPending": RecordStatus.UNKNOWN,
    "PipelineRunStopping": RecordStatus.UNKNOWN,
    "CancelledRunningFinally": RecordStatus.UNKNOWN,
    "StoppedRunningFinally": RecordStatus.UNKNOWN,
}

_POD_REASONS = {
    **dict.fromkeys(
        (
            "TaskRunResolutionFailed",
            "TaskRunValidationFailed",
            "TaskValidationFailed",
            "ResourceVerificationFailed",
            "ExceededResourceQuota",
            "ExceededNodeResources",
            "PullImageFailed",
            "CreateContainerConfigError",
            "PodCreationFailed",
            "PodAdmissionFailed",
        ),
        RecordStatus.FAILURE,
    ),
    "Pending": RecordStatus.UNKNOWN,
}

_REASON_TABLES = (_TASKRUN_REASONS, _PIPELINERUN_REASONS, _POD_REASONS)


def status(accessor: ConditionAccessor) -> RecordStatus:
    """Map the Succeeded condition of a run to a record status."""
    cond = accessor.get_condition(CONDITION_SUCCEEDED)
    if cond is None:
        return RecordStatus.UNKNOWN
    for table in _REASON_TABLES:
        if cond.reason in table:
            return table[cond.reason]
    return RecordStatus.UNKNOWN