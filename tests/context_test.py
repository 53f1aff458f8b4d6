import pytest

from ciflow import ConfigError, on_manual, on_pull_request, on_push, on_schedule
from ciflow.context import TriggerEvent, build_run_context, should_trigger


def test_unknown_event_kind_is_rejected():
    with pytest.raises(ConfigError, match="unknown event kind"):
        TriggerEvent("tag")


def test_push_with_ignored_branches():
    rule = on_push(branches_ignore=["staging.tmp", "trying.tmp", "staging-squash-merge.tmp"])
    assert rule.matches(TriggerEvent("push", branch="devel"))
    assert rule.matches(TriggerEvent("push", branch="feature/x"))
    assert not rule.matches(TriggerEvent("push", branch="trying.tmp"))
    assert not rule.matches(TriggerEvent("pull_request", branch="devel"))


def test_pull_request_on_target_branch_patterns():
    rule = on_pull_request(branches=["devel", "version-*"])
    assert rule.matches(TriggerEvent("pull_request", branch="devel"))
    assert rule.matches(TriggerEvent("pull_request", branch="version-2-0"))
    assert not rule.matches(TriggerEvent("pull_request", branch="main"))
    assert not rule.matches(TriggerEvent("pull_request"))


def test_should_trigger():
    rules = [on_push(branches_ignore=["trying.tmp"]), on_pull_request(branches=["devel"])]
    assert should_trigger(rules, TriggerEvent("push", branch="devel"))
    assert not should_trigger(rules, TriggerEvent("push", branch="trying.tmp"))
    assert not should_trigger(rules, TriggerEvent("manual"))
    assert should_trigger(rules + [on_manual()], TriggerEvent("manual"))
    assert should_trigger([on_schedule()], TriggerEvent("scheduled"))


def test_no_rules_means_every_event():
    assert should_trigger([], TriggerEvent("scheduled"))


def test_run_context_exposes_event_facts(tmp_path):
    ctx = build_run_context(
        TriggerEvent("pull_request", branch="devel", fingerprint="f"),
        workflow="ci",
        repo_root=tmp_path,
        work_dir=tmp_path / "work",
    )
    assert (ctx.kind, ctx.branch, ctx.fingerprint) == ("pull_request", "devel", "f")
    assert ctx.duplicate is False
    assert ctx.workflow == "ci"
    assert ctx.work_dir == tmp_path / "work"
