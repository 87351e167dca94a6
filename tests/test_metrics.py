from datetime import datetime, timedelta, timezone

import pytest

from tkresults.convert import Condition, PipelineRun, TaskRun
from tkresults.metrics import (
    DURATION_TYPE_HISTOGRAM,
    DURATION_TYPE_LAST_VALUE,
    METRICS_CONFIG_NAME,
    PIPELINERUN_LEVEL_AT_NS,
    TASKRUN_LEVEL_AT_NS,
    MetricsConfig,
    MetricsRegistry,
    PipelineRunRecorder,
    TaskRunRecorder,
    is_part_of_pipeline,
    pipelinerun_metrics_on_store,
    register_pipelinerun_views,
    register_taskrun_views,
    taskrun_metrics_on_store,
    unregister_pipelinerun_views,
    unregister_taskrun_views,
)

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
COMPLETION = NOW - timedelta(minutes=1)
FAILED = NOW - timedelta(seconds=30)
START = NOW - timedelta(minutes=2)


def _cfg():
    return MetricsConfig(
        duration_taskrun_type=DURATION_TYPE_LAST_VALUE,
        duration_pipelinerun_type=DURATION_TYPE_LAST_VALUE,
    )


def _pr(condition, completion=None):
    status = {"conditions": [condition], "startTime": START.isoformat()}
    if completion is not None:
        status["completionTime"] = completion.isoformat()
    return PipelineRun(
        metadata={"name": "pipelinerun-1", "namespace": "ns"},
        spec={"pipelineRef": {"name": "pipeline-1"}},
        status=status,
    )


def _tr(condition, labels=None):
    metadata = {"name": "taskrun-1", "namespace": "ns"}
    if labels:
        metadata["labels"] = labels
    return TaskRun(
        metadata=metadata,
        spec={"taskRef": {"name": "task-1"}},
        status={
            "conditions": [condition],
            "startTime": START.isoformat(),
            "completionTime": COMPLETION.isoformat(),
        },
    )


PR_CASES = [
    (
        _pr(Condition(type="Succeeded", status="True"), COMPLETION),
        {"pipeline": "pipeline-1", "namespace": "ns", "status": "success"},
        {"namespace": "ns", "status": "success"},
        60.0,
    ),
    (
        _pr(Condition(type="Succeeded", status="False", reason="Cancelled",
                      last_transition_time=FAILED.isoformat())),
        {"pipeline": "pipeline-1", "namespace": "ns", "status": "cancelled"},
        {"namespace": "ns", "status": "cancelled"},
        30.0,
    ),
    (
        _pr(Condition(type="Succeeded", status="False", last_transition_time=FAILED.isoformat())),
        {"pipeline": "pipeline-1", "namespace": "ns", "status": "failed"},
        {"namespace": "ns", "status": "failed"},
        30.0,
    ),
]


@pytest.mark.parametrize("run,duration_tags,count_tags,duration", PR_CASES)
def test_pipelinerun_duration_and_count_deleted(run, duration_tags, count_tags, duration):
    registry = MetricsRegistry()
    cfg = _cfg()
    unregister_pipelinerun_views(registry)
    register_pipelinerun_views(registry, cfg)
    PipelineRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.last_value("pipelinerun_delete_duration_seconds", duration_tags) == duration
    assert registry.count("pipelinerun_delete_count", count_tags) == 1


PIPELINE_LABELS = {"tekton.dev/pipeline": "pipeline-1", "tekton.dev/pipelineRun": "pipelinerun-1"}

TR_CASES = [
    (
        _tr(Condition(type="Succeeded", status="True")),
        {"task": "task-1", "pipeline": "anonymous", "namespace": "ns", "status": "success"},
        {"namespace": "ns", "status": "success"},
    ),
    (
        _tr(Condition(type="Succeeded", status="False")),
        {"task": "task-1", "pipeline": "anonymous", "namespace": "ns", "status": "failed"},
        {"namespace": "ns", "status": "failed"},
    ),
    (
        _tr(Condition(type="Succeeded", status="True"), PIPELINE_LABELS),
        {"pipeline": "pipeline-1", "task": "task-1", "namespace": "ns", "status": "success"},
        {"namespace": "ns", "status": "success"},
    ),
    (
        _tr(Condition(type="Succeeded", status="False"), PIPELINE_LABELS),
        {"pipeline": "pipeline-1", "task": "task-1", "namespace": "ns", "status": "failed"},
        {"namespace": "ns", "status": "failed"},
    ),
]


@pytest.mark.parametrize("run,duration_tags,count_tags", TR_CASES)
def test_taskrun_duration_and_count_deleted(run, duration_tags, count_tags):
    registry = MetricsRegistry()
    cfg = _cfg()
    unregister_taskrun_views(registry)
    register_taskrun_views(registry, cfg)
    TaskRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.last_value("taskrun_delete_duration_seconds", duration_tags) == 60.0
    assert registry.count("taskrun_delete_count", count_tags) == 1


def test_taskrun_cancelled_status():
    registry = MetricsRegistry()
    cfg = _cfg()
    register_taskrun_views(registry, cfg)
    run = _tr(Condition(type="Succeeded", status="False", reason="TaskRunCancelled"))
    TaskRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.count("taskrun_delete_count", {"namespace": "ns", "status": "cancelled"}) == 1


def test_namespace_level_drops_pipeline_tag():
    registry = MetricsRegistry()
    cfg = MetricsConfig(pipelinerun_level=PIPELINERUN_LEVEL_AT_NS,
                        duration_pipelinerun_type=DURATION_TYPE_LAST_VALUE)
    register_pipelinerun_views(registry, cfg)
    run = PR_CASES[0][0]
    PipelineRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.last_value("pipelinerun_delete_duration_seconds",
                               {"namespace": "ns", "status": "success"}) == 60.0


def test_taskrun_namespace_levels():
    registry = MetricsRegistry()
    cfg = MetricsConfig(taskrun_level=TASKRUN_LEVEL_AT_NS, pipelinerun_level=PIPELINERUN_LEVEL_AT_NS,
                        duration_pipelinerun_type=DURATION_TYPE_LAST_VALUE)
    register_taskrun_views(registry, cfg)
    run = TR_CASES[2][0]
    TaskRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.last_value("taskrun_delete_duration_seconds",
                               {"namespace": "ns", "status": "success"}) == 60.0


def test_anonymous_pipeline_without_ref():
    registry = MetricsRegistry()
    cfg = _cfg()
    register_pipelinerun_views(registry, cfg)
    run = PipelineRun(metadata={"namespace": "ns"},
                      status={"conditions": [Condition(type="Succeeded", status="True")],
                              "completionTime": COMPLETION})
    PipelineRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)
    assert registry.last_value("pipelinerun_delete_duration_seconds",
                               {"pipeline": "anonymous", "namespace": "ns", "status": "success"}) == 60.0


def test_histogram_counts_records():
    registry = MetricsRegistry()
    cfg = MetricsConfig(duration_pipelinerun_type=DURATION_TYPE_HISTOGRAM)
    register_pipelinerun_views(registry, cfg)
    recorder = PipelineRunRecorder(registry, clock=lambda: NOW)
    recorder.duration_and_count_deleted(cfg, PR_CASES[0][0])
    recorder.duration_and_count_deleted(cfg, PR_CASES[0][0])
    tags = {"pipeline": "pipeline-1", "namespace": "ns", "status": "success"}
    assert registry.count("pipelinerun_delete_duration_seconds", tags) == 2


def test_invalid_pipelinerun_level_raises():
    with pytest.raises(ValueError, match="PipelinerunLevel: bogus"):
        register_pipelinerun_views(MetricsRegistry(), MetricsConfig(pipelinerun_level="bogus"))


def test_invalid_taskrun_level_raises():
    with pytest.raises(ValueError, match="TaskrunLevel: bogus"):
        register_taskrun_views(MetricsRegistry(), MetricsConfig(taskrun_level="bogus"))


def test_unregistered_views_drop_records():
    registry = MetricsRegistry()
    cfg = _cfg()
    register_pipelinerun_views(registry, cfg)
    unregister_pipelinerun_views(registry)
    PipelineRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, PR_CASES[0][0])
    with pytest.raises(KeyError):
        registry.count("pipelinerun_delete_count", {"namespace": "ns", "status": "success"})


def test_invalid_tag_value_raises():
    registry = MetricsRegistry()
    cfg = _cfg()
    register_pipelinerun_views(registry, cfg)
    run = PipelineRun(metadata={"namespace": "bad\nns"},
                      status={"conditions": [Condition(type="Succeeded", status="True")]})
    with pytest.raises(ValueError):
        PipelineRunRecorder(registry, clock=lambda: NOW).duration_and_count_deleted(cfg, run)


def test_on_store_registers_only_for_metrics_config():
    registry = MetricsRegistry()
    callback = pipelinerun_metrics_on_store(registry)
    callback("other-config", _cfg())
    assert not registry.is_registered("pipelinerun_delete_count")
    callback(METRICS_CONFIG_NAME, "not a config")
    assert not registry.is_registered("pipelinerun_delete_count")
    callback(METRICS_CONFIG_NAME, _cfg())
    assert registry.is_registered("pipelinerun_delete_count")


def test_taskrun_on_store_bad_config_leaves_views_unregistered():
    registry = MetricsRegistry()
    callback = taskrun_metrics_on_store(registry)
    callback(METRICS_CONFIG_NAME, _cfg())
    assert registry.is_registered("taskrun_delete_duration_seconds")
    callback(METRICS_CONFIG_NAME, MetricsConfig(taskrun_level="bogus"))
    assert not registry.is_registered("taskrun_delete_duration_seconds")


def test_is_part_of_pipeline():
    assert is_part_of_pipeline(TR_CASES[2][0]) == (True, "pipeline-1", "pipelinerun-1")
    assert is_part_of_pipeline(TR_CASES[0][0]) == (False, "", "")
    partial = TaskRun(metadata={"labels": {"tekton.dev/pipeline": "p"}})
    assert is_part_of_pipeline(partial) == (False, "", "")