import json
import sys
import threading
import time
from pathlib import Path

import pytest

from ciflow import ConfigError, Outcome, gate, job, load_workflow, run_dag, wf
from ciflow.dag import build_graph

ROOT = Path(__file__).resolve().parent.parent


def test_failed_dependency_cancels_dependents_without_running_them(recorder):
    report = run_dag(
        [
            job("build", body=recorder.fail),
            job("test", body=recorder.ok, needs=["build"]),
            job("deploy", body=recorder.ok, needs=["test"]),
        ]
    )

    assert report.instance("build").outcome is Outcome.FAILED
    assert report.instance("test").outcome is Outcome.CANCELLED
    assert report.instance("deploy").outcome is Outcome.CANCELLED
    assert "build" in report.instance("test").detail
    assert recorder.calls == ["build"]


def test_failure_does_not_abort_independent_siblings(recorder):
    def slow(ctx):
        time.sleep(0.2)
        recorder.ok(ctx)

    report = run_dag(
        [
            job("lint", body=recorder.fail),
            job("test", body=slow),
            job("doc", body=recorder.ok, needs=["test"]),
        ]
    )
    assert report.instance("lint").outcome is Outcome.FAILED
    assert report.instance("test").outcome is Outcome.SUCCEEDED
    assert report.instance("doc").outcome is Outcome.SUCCEEDED


def test_no_gate_run_outcome_comes_from_all_instances(recorder):
    report = run_dag([job("a", body=recorder.ok), job("b", body=recorder.fail)])
    assert report.gate is None
    assert report.outcome is Outcome.FAILED
    assert report.exit_code == 1
    assert [i.id for i in report.failures()] == ["b"]

    report = run_dag([job("a", body=recorder.ok)])
    assert report.outcome is Outcome.SUCCEEDED
    assert report.exit_code == 0


def test_force_run_job_runs_after_failure(recorder):
    report = run_dag(
        [
            job("build", body=recorder.fail),
            job("cleanup", body=recorder.ok, needs=["build"], condition="force-run"),
        ]
    )
    assert report.instance("cleanup").outcome is Outcome.SUCCEEDED
    assert recorder.ran("cleanup")


def test_cancel_before_start_cancels_everything(recorder):
    cancel = threading.Event()
    cancel.set()
    report = run_dag(
        [job("a", body=recorder.ok), job("b", body=recorder.ok, needs=["a"]), gate("passed", ["a", "b"])],
        cancel_event=cancel,
    )
    assert recorder.calls == []
    assert {i.outcome for i in report.instances} == {Outcome.CANCELLED}
    assert report.outcome is Outcome.CANCELLED
    assert report.exit_code == 1


def test_cancel_while_running_discards_the_result(recorder):
    cancel = threading.Event()

    def long(ctx):
        cancel.set()
        time.sleep(0.3)
        recorder.ok(ctx)

    report = run_dag(
        [job("a", body=long), job("b", body=recorder.ok, needs=["a"])],
        cancel_event=cancel,
        poll_interval=0.02,
    )
    assert report.instance("a").outcome is Outcome.CANCELLED
    assert report.instance("b").outcome is Outcome.CANCELLED
    assert not recorder.ran("b")


def test_independent_instances_run_in_parallel_by_default():
    barrier = threading.Barrier(3, timeout=5)

    def meet(ctx):
        barrier.wait()

    report = run_dag([job(n, body=meet) for n in ("a", "b", "c")])
    assert report.succeeded


def test_concurrency_class_limit_is_respected():
    lock = threading.Lock()
    running = {"now": 0, "max": 0}

    def body(ctx):
        with lock:
            running["now"] += 1
            running["max"] = max(running["max"], running["now"])
        time.sleep(0.05)
        with lock:
            running["now"] -= 1

    workflow = wf(
        job("t", body=body, matrix={"shard": [0, 1, 2, 3]}, concurrency="linux"),
        job("other", body=body),
        concurrency_limits={"linux": 2},
    )
    report = run_dag(workflow, max_workers=8)
    assert report.succeeded
    assert running["max"] <= 3


def test_concurrency_class_limit_of_one_serialises():
    lock = threading.Lock()
    running = {"now": 0, "max": 0}

    def body(ctx):
        with lock:
            running["now"] += 1
            running["max"] = max(running["max"], running["now"])
        time.sleep(0.02)
        with lock:
            running["now"] -= 1

    report = run_dag(
        [job("t", body=body, matrix={"shard": [0, 1, 2]}, concurrency="gpu")],
        concurrency_limits={"gpu": 1},
    )
    assert report.succeeded
    assert running["max"] == 1


def test_bad_concurrency_limit_is_a_config_error():
    with pytest.raises(ConfigError, match=">= 1"):
        run_dag([job("a", body=lambda ctx: None)], concurrency_limits={"linux": 0})


def test_report_serialises_to_json(recorder):
    report = run_dag(
        [job("a", body=recorder.ok, matrix={"batch": [0, 1]}), gate("passed", ["a"])]
    )
    data = json.loads(report.model_dump_json())
    assert data["outcome"] == "succeeded"
    assert data["exit_code"] == 0
    assert data["gate"] == "passed"
    assert data["event"] == "manual"
    assert [i["id"] for i in data["instances"]] == ["a[batch=0]", "a[batch=1]", "passed"]
    assert data["instances"][0]["matrix"] == {"batch": 0}
    assert data["instances"][0]["duration"] is not None


def test_load_sample_workflow():
    workflow = load_workflow(ROOT / "ciflow_workflow.py")
    assert workflow.name == "build-and-test"
    assert workflow.concurrency_limits == {"linux": 4}

    graph = build_graph(workflow.jobs)
    assert graph.by_job["test"] == [
        "test[batch=0,total_batch=2]",
        "test[batch=1,total_batch=2]",
    ]
    assert graph.gate == "passed"
    assert graph.instance_levels()[0] == ["bootstrap"]
    assert graph.instance_levels()[-1] == ["passed"]


def test_load_workflow_from_jobs_list(tmp_path):
    path = tmp_path / "small_workflow.py"
    path.write_text(
        "from ciflow import job\n"
        "JOBS = [job('a', body=lambda ctx: None)]\n",
        encoding="utf-8",
    )
    workflow = load_workflow(path)
    assert workflow.name == "small_workflow"
    assert [j.name for j in workflow.jobs] == ["a"]


def test_load_workflow_rejects_files_without_jobs(tmp_path):
    path = tmp_path / "empty_workflow.py"
    path.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(TypeError, match="Workflow"):
        load_workflow(path)

    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "missing.py")


def test_sys_exit_in_a_body_fails_the_instance(recorder):
    def bail(ctx):
        sys.exit(3)

    report = run_dag(
        [
            job("a", body=bail),
            job("b", body=recorder.ok, needs=["a"]),
            gate("passed", ["a", "b"]),
        ]
    )
    assert report.instance("a").outcome is Outcome.FAILED
    assert report.instance("a").detail == "SystemExit: 3"
    assert report.instance("b").outcome is Outcome.CANCELLED
    assert report.instance("passed").outcome is Outcome.FAILED
    assert report.exit_code == 1
    assert recorder.calls == []
