"""Deletion metrics for pipeline runs and task runs."""

from __future__ import annotations

import bisect
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

from .convert import CONDITION_SUCCEEDED, PipelineRun, TaskRun

logger = logging.getLogger(__name__)

METRICS_CONFIG_NAME = "config-metrics"

TASKRUN_LEVEL_AT_TASK = "task"
TASKRUN_LEVEL_AT_NS = "namespace"
PIPELINERUN_LEVEL_AT_PIPELINE = "pipeline"
PIPELINERUN_LEVEL_AT_NS = "namespace"
DURATION_TYPE_HISTOGRAM = "histogram"
DURATION_TYPE_LAST_VALUE = "lastvalue"

DEFAULT_TASKRUN_LEVEL = TASKRUN_LEVEL_AT_TASK
DEFAULT_PIPELINERUN_LEVEL = PIPELINERUN_LEVEL_AT_PIPELINE
DEFAULT_DURATION_TYPE = DURATION_TYPE_HISTOGRAM

PIPELINE_LABEL_KEY = "tekton.dev/pipeline"
PIPELINERUN_LABEL_KEY = "tekton.dev/pipelineRun"

PIPELINERUN_DELETE_COUNT = "pipelinerun_delete_count"
PIPELINERUN_DELETE_DURATION = "pipelinerun_delete_duration_seconds"
TASKRUN_DELETE_COUNT = "taskrun_delete_count"
TASKRUN_DELETE_DURATION = "taskrun_delete_duration_seconds"

_DESCRIPTIONS = {
    PIPELINERUN_DELETE_COUNT: "total number of deleted pipelineruns",
    PIPELINERUN_DELETE_DURATION: "the pipelinerun deletion time in seconds",
    TASKRUN_DELETE_COUNT: "total number of deleted taskruns",
    TASKRUN_DELETE_DURATION: "the pipelinerun deletion time in seconds",
}

_BUCKETS = (10, 30, 60, 300, 900, 1800, 3600, 5400, 10800, 21600, 43200, 86400)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_MAX_DURATION_SECONDS = (2**63 - 1) // 10**9
_MAX_TAG_VALUE_LENGTH = 255


@dataclass
class MetricsConfig:
    """Configuration of how deletion metrics are tagged and aggregated."""

    taskrun_level: str = DEFAULT_TASKRUN_LEVEL
    pipelinerun_level: str = DEFAULT_PIPELINERUN_LEVEL
    duration_taskrun_type: str = DEFAULT_DURATION_TYPE
    duration_pipelinerun_type: str = DEFAULT_DURATION_TYPE


class Aggregation(enum.Enum):
    COUNT = "count"
    LAST_VALUE = "lastvalue"
    DISTRIBUTION = "distribution"


@dataclass(frozen=True)
class View:
    """How recorded values of a measure are tagged and aggregated."""

    name: str
    description: str
    measure: str
    tag_keys: tuple[str, ...]
    aggregation: Aggregation
    buckets: tuple[float, ...] = ()


@dataclass
class _Row:
    count: int = 0
    total: float = 0.0
    last: float = 0.0
    bucket_counts: list[int] = field(default_factory=list)


class MetricsRegistry:
    """An in-memory set of registered views and the data recorded into them."""

    def __init__(self) -> None:
        self._views: dict[str, View] = {}
        self._rows: dict[str, dict[frozenset, _Row]] = {}

    def register(self, *views: View) -> None:
        for view in views:
            if view.aggregation is None:
                raise ValueError(f"cannot register view {view.name!r}: no aggregation")
            existing = self._views.get(view.name)
            if existing is not None and existing != view:
                raise ValueError(f"cannot register view {view.name!r}: a different view with the same name is registered")
        for view in views:
            if view.name not in self._views:
                self._views[view.name] = view
                self._rows[view.name] = {}

    def unregister(self, name: str) -> None:
        self._views.pop(name, None)
        self._rows.pop(name, None)

    def is_registered(self, name: str) -> bool:
        return name in self._views

    def view(self, name: str) -> View:
        return self._views[name]

    def record(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        """Record ``value`` of measure ``name`` into every view of that measure."""
        for view in self._views.values():
            if view.measure != name:
                continue
            key = frozenset((k, tags[k]) for k in view.tag_keys if k in tags)
            row = self._rows[view.name].setdefault(
                key, _Row(bucket_counts=[0] * (len(view.buckets) + 1))
            )
            row.count += 1
            row.total += value
            row.last = value
            if view.aggregation is Aggregation.DISTRIBUTION:
                row.bucket_counts[bisect.bisect_right(view.buckets, value)] += 1

    def _row(self, name: str, tags: Mapping[str, str]) -> _Row:
        rows = self._rows.get(name)
        if rows is None:
            raise KeyError(f"no view registered as {name!r}")
        key = frozenset(tags.items())
        if key not in rows:
            raise KeyError(f"no data for {name!r} with tags {dict(tags)!r}")
        return rows[key]

    def last_value(self, name: str, tags: Mapping[str, str]) -> float:
        """Return the last value recorded in view ``name`` for exactly ``tags``."""
        return self._row(name, tags).last

    def count(self, name: str, tags: Mapping[str, str]) -> int:
        """Return how many values were recorded in view ``name`` for exactly ``tags``."""
        return self._row(name, tags).count


def _duration_view(name: str, description: str, tag_keys: tuple[str, ...], duration_type: str) -> View:
    if duration_type == DURATION_TYPE_LAST_VALUE:
        aggregation, buckets = Aggregation.LAST_VALUE, ()
    elif duration_type == DURATION_TYPE_HISTOGRAM:
        aggregation, buckets = Aggregation.DISTRIBUTION, tuple(float(b) for b in _BUCKETS)
    else:
        raise ValueError(f"cannot register view {name!r}: no aggregation for duration type {duration_type!r}")
    return View(name, description, name, tag_keys, aggregation, buckets)


def register_pipelinerun_views(registry: MetricsRegistry, cfg: MetricsConfig) -> None:
    """Register pipeline run deletion views; raises ValueError on a bad config."""
    if cfg.pipelinerun_level == PIPELINERUN_LEVEL_AT_PIPELINE:
        extra: tuple[str, ...] = ("pipeline",)
    elif cfg.pipelinerun_level == PIPELINERUN_LEVEL_AT_NS:
        extra = ()
    else:
        raise ValueError("invalid config for PipelinerunLevel: " + cfg.pipelinerun_level)
    count_view = View(
        PIPELINERUN_DELETE_COUNT,
        _DESCRIPTIONS[PIPELINERUN_DELETE_COUNT],
        PIPELINERUN_DELETE_COUNT,
        ("status", "namespace"),
        Aggregation.COUNT,
    )
    duration_view = _duration_view(
        PIPELINERUN_DELETE_DURATION,
        _DESCRIPTIONS[PIPELINERUN_DELETE_COUNT],
        ("status", "namespace") + extra,
        cfg.duration_pipelinerun_type,
    )
    logger.debug("registering pipelinerun metrics view")
    registry.register(count_view, duration_view)


def unregister_pipelinerun_views(registry: MetricsRegistry) -> None:
    logger.debug("unregistering pipelinerun metrics view")
    registry.unregister(PIPELINERUN_DELETE_COUNT)
    registry.unregister(PIPELINERUN_DELETE_DURATION)


def register_taskrun_views(registry: MetricsRegistry, cfg: MetricsConfig) -> None:
    """Register task run deletion views; raises ValueError on a bad config."""
    if cfg.taskrun_level == TASKRUN_LEVEL_AT_TASK:
        extra: tuple[str, ...] = ("task",)
    elif cfg.taskrun_level == TASKRUN_LEVEL_AT_NS:
        extra = ()
    else:
        raise ValueError("invalid config for TaskrunLevel: " + cfg.taskrun_level)
    if cfg.pipelinerun_level == PIPELINERUN_LEVEL_AT_PIPELINE:
        extra += ("pipeline",)
    elif cfg.pipelinerun_level != PIPELINERUN_LEVEL_AT_NS:
        raise ValueError("invalid config for PipelinerunLevel: " + cfg.pipelinerun_level)
    count_view = View(
        TASKRUN_DELETE_COUNT,
        _DESCRIPTIONS[TASKRUN_DELETE_COUNT],
        TASKRUN_DELETE_COUNT,
        ("status", "namespace"),
        Aggregation.COUNT,
    )
    duration_view = _duration_view(
        TASKRUN_DELETE_DURATION,
        _DESCRIPTIONS[TASKRUN_DELETE_DURATION],
        ("status", "namespace") + extra,
        cfg.duration_pipelinerun_type,
    )
    logger.debug("registering taskrun metrics view")
    registry.register(count_view, duration_view)


def unregister_taskrun_views(registry: MetricsRegistry) -> None:
    logger.debug("unregistering taskrun metrics view")
    registry.unregister(TASKRUN_DELETE_COUNT)
    registry.unregister(TASKRUN_DELETE_DURATION)


def _on_store(
    registry: MetricsRegistry,
    unregister: Callable[[MetricsRegistry], None],
    register: Callable[[MetricsRegistry, MetricsConfig], None],
) -> Callable[[str, Any], None]:
    def callback(name: str, value: Any) -> None:
        if name != METRICS_CONFIG_NAME:
            return
        if not isinstance(value, MetricsConfig):
            logger.error("Failed to do type insertion for extracting metrics config")
            return
        unregister(registry)
        try:
            register(registry, value)
        except ValueError as err:
            logger.error("Failed to register View %s", err)

    return callback


def pipelinerun_metrics_on_store(registry: MetricsRegistry) -> Callable[[str, Any], None]:
    """Return a config-store callback that re-registers pipeline run views."""
    return _on_store(registry, unregister_pipelinerun_views, register_pipelinerun_views)


def taskrun_metrics_on_store(registry: MetricsRegistry) -> Callable[[str, Any], None]:
    """Return a config-store callback that re-registers task run views."""
    return _on_store(registry, unregister_taskrun_views, register_taskrun_views)


def is_part_of_pipeline(task_run: TaskRun) -> tuple[bool, str, str]:
    """Return whether the task run belongs to a pipeline, and the pipeline and pipeline run names."""
    labels = task_run.metadata.get("labels") or {}
    if PIPELINE_LABEL_KEY in labels and PIPELINERUN_LABEL_KEY in labels:
        return True, labels[PIPELINE_LABEL_KEY], labels[PIPELINERUN_LABEL_KEY]
    return False, "", ""


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _whole_seconds(delta: timedelta) -> float:
    return float(min(delta // timedelta(seconds=1), _MAX_DURATION_SECONDS))


def _check_tags(tags: Mapping[str, str]) -> None:
    for key, value in tags.items():
        if len(value) > _MAX_TAG_VALUE_LENGTH or not all(" " <= ch <= "~" for ch in value):
            raise ValueError(f"invalid value for tag {key!r}: {value!r}")


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


class _Recorder:
    def __init__(self, registry: MetricsRegistry, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.registry = registry
        self._clock = clock or _default_clock

    def _status_and_duration(self, run: Any, now: datetime, cancel_reason: str) -> tuple[str, float]:
        status = "success"
        duration = 0.0
        cond = run.get_condition(CONDITION_SUCCEEDED)
        if cond is not None and cond.status == "False":
            status = "failed"
            failed_time = _to_datetime(cond.last_transition_time) or _ZERO_TIME
            if not failed_time > now:
                duration = _whole_seconds(now - failed_time)
            if cond.reason == cancel_reason:
                status = "cancelled"
        completion = _to_datetime(run.status.get("completionTime"))
        if completion is not None and not completion > now:
            duration = _whole_seconds(now - completion)
        return status, duration


class PipelineRunRecorder(_Recorder):
    """Records deletion count and duration of pipeline runs."""

    def duration_and_count_deleted(self, cfg: MetricsConfig, run: PipelineRun) -> None:
        now = self._clock()
        pipeline_name = (run.spec.get("pipelineRef") or {}).get("name") or "anonymous"
        status, duration = self._status_and_duration(run, now, "Cancelled")
        tags = {"namespace": run.metadata.get("namespace", ""), "status": status}
        if cfg.pipelinerun_level == PIPELINERUN_LEVEL_AT_PIPELINE:
            tags["pipeline"] = pipeline_name
        _check_tags(tags)
        self.registry.record(PIPELINERUN_DELETE_COUNT, 1, tags)
        self.registry.record(PIPELINERUN_DELETE_DURATION, duration, tags)


class TaskRunRecorder(_Recorder):
    """Records deletion count and duration of task runs."""

    def duration_and_count_deleted(self, cfg: MetricsConfig, run: TaskRun) -> None:
        now = self._clock()
        task_name = (run.spec.get("taskRef") or {}).get("name") or "anonymous"
        status, duration = self._status_and_duration(run, now, "TaskRunCancelled")
        tags = {"namespace": run.metadata.get("namespace", ""), "status": status}
        in_pipeline, pipeline, _ = is_part_of_pipeline(run)
        pipeline_name = pipeline if in_pipeline else "anonymous"
        if cfg.pipelinerun_level == PIPELINERUN_LEVEL_AT_PIPELINE:
            tags["pipeline"] = pipeline_name
        if cfg.taskrun_level == TASKRUN_LEVEL_AT_TASK:
            tags["task"] = task_name
        _check_tags(tags)
        self.registry.record(TASKRUN_DELETE_COUNT, 1, tags)
        self.registry.record(TASKRUN_DELETE_DURATION, duration, tags)