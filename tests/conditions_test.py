import pytest

from ciflow import DependencyFailure, Outcome, job, run_dag
from ciflow.conditions import Decision, decide, evaluate
from ciflow.context import RunContext, TriggerEvent
from ciflow.matrix import expand
from ciflow.model import InstanceState


def noop(ctx):
    pass


def state_of(condition="run-if-success"):
    (inst,) = expand(job("x", body=noop, condition=condition))
    return InstanceState(inst)


@pytest.fixture
def duplicate_context():
    return RunContext(event=TriggerEvent("pull_request", branch="devel", fingerprint="abc"), duplicate=True)


def test_zero_dependency_instance_runs(context):
    state = state_of()
    assert evaluate(state, {}, context) is Decision.RUN
    assert state.outcome is Outcome.PENDING


def test_skip_if_duplicate_skips_without_running(duplicate_context):
    state = state_of("skip-if-duplicate")
    assert evaluate(state, {}, duplicate_context) is Decision.SKIP
    assert state.outcome is Outcome.SKIPPED
    assert "duplicate" in state.detail


def test_skip_if_duplicate_runs_on_fresh_content(context):
    assert evaluate(state_of("skip-if-duplicate"), {}, context) is Decision.RUN


def test_force_run_ignores_duplicate_and_upstream(duplicate_context):
    state = state_of("force-run")
    deps = {"a": Outcome.FAILED, "b": Outcome.SKIPPED, "c": Outcome.CANCELLED}
    assert evaluate(state, deps, duplicate_context) is Decision.RUN


def test_skipped_dependency_skips_dependent(context):
    state = state_of()
    assert evaluate(state, {"a": Outcome.SUCCEEDED, "b": Outcome.SKIPPED}, context) is Decision.SKIP
    assert state.outcome is Outcome.SKIPPED
    assert "b" in state.detail


def test_failed_dependency_raises_dependency_failure(context):
    state = state_of()
    with pytest.raises(DependencyFailure) as exc:
        evaluate(state, {"a": Outcome.SUCCEEDED, "b": Outcome.FAILED}, context)
    assert exc.value.failed == ["b"]
    assert state.outcome is Outcome.PENDING


def test_evaluating_before_dependencies_finish_is_an_error(context):
    with pytest.raises(RuntimeError, match="before dependencies finished"):
        evaluate(state_of(), {"a": Outcome.RUNNING}, context)


def test_reevaluating_terminal_instance_is_a_noop(context):
    state = state_of()
    state.transition(Outcome.RUNNING)
    state.transition(Outcome.SUCCEEDED)

    assert evaluate(state, {}, context) is Decision.NOOP
    assert state.outcome is Outcome.SUCCEEDED


def test_rerunning_a_finished_graph_does_not_invoke_bodies(recorder):
    from ciflow.dag import build_graph

    graph = build_graph([job("a", body=recorder.ok), job("b", body=recorder.ok, needs=["a"])])
    run_dag(graph)
    assert recorder.calls == ["a", "b"]

    report = run_dag(graph)
    assert recorder.calls == ["a", "b"]
    assert report.instance("b").outcome is Outcome.SUCCEEDED


def test_decide_is_pure(duplicate_context):
    state = state_of("skip-if-duplicate")
    decision, reason = decide(state.instance, {}, duplicate_context)
    assert decision is Decision.SKIP
    assert reason
    assert state.outcome is Outcome.PENDING


def test_terminal_states_are_write_once():
    state = state_of()
    assert state.transition(Outcome.SKIPPED)
    assert not state.transition(Outcome.CANCELLED)
    assert state.outcome is Outcome.SKIPPED


def test_illegal_transition_raises():
    with pytest.raises(RuntimeError, match="illegal transition"):
        state_of().transition(Outcome.SUCCEEDED)
