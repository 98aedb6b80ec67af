import pytest

from fleet_rollout.errors import (
    ConsulServerNotSyncedError, DeploymentInterrupted, OperatorUnavailable, ProviderError,
    TeardownError, UnhealthyDeploymentError,
)
from fleet_rollout.engine import DeploymentOrchestrator
from fleet_rollout.models import SizeSnapshot
from fleet_rollout.prompts import PolicyOperator


class TestRetry:
    """Operator-driven retries of a failed step."""

    def test_unhealthy_instance_retry_reissues_same_increment(self, fake_groups, orchestrator, health, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2)
        health.verdicts = [False]
        operator.choices = ["retry"]

        res = orchestrator.step_deploy(new, old, 2)

        assert fake_groups.calls[:3] == [
            ("set_size", "new", 1),
            ("set_size", "new", 1),
            ("set_size", "old", 1),
        ]
        assert fake_groups.sizes("new") == [1, 1, 2]
        assert res.success is True
        assert [e["outcome"] for e in res.events("failure")] == ["unhealthy_instance"]
        # The retried step re-checks the same new instance
        assert health.calls[0][0] == health.calls[1][0]

    def test_retry_repeats_only_the_failed_step(self, fake_groups, orchestrator, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 3)
        fake_groups.fail_next("new", 2, ProviderError("throttled", group="new"))
        operator.choices = ["retry"]

        orchestrator.step_deploy(new, old, 3)

        assert fake_groups.calls == [
            ("set_size", "new", 1),
            ("set_size", "old", 2),
            ("set_size", "new", 2),
            ("set_size", "new", 2),
            ("set_size", "old", 1),
            ("set_size", "new", 3),
            ("set_size", "old", 0),
            ("teardown", "old"),
        ]

    def test_failed_scale_down_is_retried_in_place(self, fake_groups, orchestrator, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2)
        fake_groups.fail_next("old", 1, ProviderError("quota", group="old"))
        operator.choices = ["retry"]

        orchestrator.step_deploy(new, old, 2)

        assert fake_groups.sizes("new") == [1, 1, 2]
        assert fake_groups.sizes("old") == [1, 1, 0]

    def test_failure_prompt_names_group_instance_and_cause(self, fake_groups, orchestrator, health, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 1)
        health.verdicts = [False]
        operator.choices = ["retry"]

        orchestrator.step_deploy(new, old, 1)

        question = operator.questions[0]
        instance_id = health.calls[0][0]
        assert "group=new" in question
        assert f"instance={instance_id}" in question
        assert "unhealthy state" in question


class TestRollback:
    """Rollback through the operator decision point."""

    def test_rollback_after_failed_scale_down(self, fake_groups, orchestrator, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2, min_size=2, max_size=2)
        error = ProviderError("scaling rejected", group="old")
        fake_groups.fail_next("old", 0, error)
        operator.choices = ["rollback"]

        with pytest.raises(ProviderError) as excinfo:
            orchestrator.step_deploy(new, old, 2)

        assert excinfo.value is error
        assert fake_groups.calls == [
            ("set_size", "new", 1),
            ("set_size", "old", 1),
            ("set_size", "new", 2),
            ("set_size", "old", 0),
            # rollback: groups swapped, target size from the snapshot
            ("set_size", "old", 2),
            ("set_size", "new", 1),
            ("set_size", "new", 0),
            ("teardown", "new"),
            ("restore_sizes", "old", SizeSnapshot(2, 2, 2)),
        ]
        restored = fake_groups.groups["old"]
        assert (restored.min_size, restored.max_size, restored.desired_capacity) == (2, 2, 2)
        assert "new" not in fake_groups.groups

        history = error.result.history
        assert [e["event"] for e in history][-2:] == ["failure", "rollback"]
        assert history[-1]["snapshot"] == SizeSnapshot(2, 2, 2)
        assert operator.deployments == 1

    @pytest.mark.parametrize("fail_at", [("new", 1), ("old", 2), ("new", 3), ("old", 0)])
    def test_rollback_restores_snapshot_from_any_step(self, fake_groups, orchestrator, operator, fail_at):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 3, min_size=3, max_size=5)
        fake_groups.fail_next(*fail_at, ProviderError("boom", group=fail_at[0]))
        operator.choices = ["rollback"]

        with pytest.raises(ProviderError, match="boom"):
            orchestrator.step_deploy(new, old, 3)

        restored = fake_groups.groups["old"]
        assert (restored.min_size, restored.max_size, restored.desired_capacity) == (3, 5, 3)
        assert len(restored.instances) == 3
        assert "new" not in fake_groups.groups
        # never asked to go below zero or above the configured maximum
        assert all(0 <= s <= 5 for s in fake_groups.sizes("old"))

    def test_consensus_failure_rolls_back_and_reraises(self, fake_groups, orchestrator, consensus, operator):
        new = fake_groups.add("new", 0, role="server")
        old = fake_groups.add("old", 2, min_size=2, max_size=2, role="server")
        consensus.synced = [False]
        operator.choices = ["rollback"]

        with pytest.raises(ConsulServerNotSyncedError):
            orchestrator.step_deploy(new, old, 2)

        assert fake_groups.calls == [
            ("set_size", "new", 1),
            ("set_size", "new", 0),
            ("teardown", "new"),
            ("restore_sizes", "old", SizeSnapshot(2, 2, 2)),
        ]

    def test_rollback_failure_is_fatal_and_not_rolled_back_again(self, fake_groups, orchestrator, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2)
        rollback_error = ProviderError("cannot shrink", group="new")
        fake_groups.fail_next("new", 0, rollback_error)
        operator.choices = ["rollback"]
        orchestrator.health.verdicts = [True, False]

        with pytest.raises(ProviderError) as excinfo:
            orchestrator.step_deploy(new, old, 2)

        assert excinfo.value is rollback_error
        assert isinstance(excinfo.value.__context__, UnhealthyDeploymentError)
        assert len(operator.questions) == 1
        assert ("teardown", "new") not in fake_groups.calls


class TestUnroutedFailures:
    """Failures that bypass the operator decision point."""

    def test_teardown_failure_is_surfaced_without_rollback(self, fake_groups, orchestrator, operator, teardown_error):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2)
        fake_groups.teardown_failures = [teardown_error]

        with pytest.raises(TeardownError):
            orchestrator.step_deploy(new, old, 2)

        assert operator.questions == []
        assert fake_groups.groups["new"].desired_capacity == 2
        assert fake_groups.groups["old"].desired_capacity == 0

    def test_interrupt_propagates_without_rollback(self, fake_groups, orchestrator, health, operator):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2)
        health.verdicts = [True, DeploymentInterrupted("Deployment interrupted")]

        with pytest.raises(DeploymentInterrupted):
            orchestrator.step_deploy(new, old, 2)

        assert fake_groups.calls == [
            ("set_size", "new", 1),
            ("set_size", "old", 1),
            ("set_size", "new", 2),
        ]
        assert operator.questions == []

    def test_operator_without_answer_stops_the_deployment(self, fake_groups, orchestrator, health):
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 1)
        health.verdicts = [False]

        with pytest.raises(OperatorUnavailable):
            orchestrator.step_deploy(new, old, 1)


class TestPolicyRetries:
    """Unattended retry budget of the policy operator."""

    def test_retry_budget_resets_for_each_deployment(self, fake_groups, health, consensus):
        policy = PolicyOperator(max_retries=1)
        orchestrator = DeploymentOrchestrator(fake_groups, health, consensus, policy)

        for suffix in ("a", "b"):
            new = fake_groups.add(f"new-{suffix}", 0)
            old = fake_groups.add(f"old-{suffix}", 1)
            health.verdicts = [False]

            res = orchestrator.step_deploy(new, old, 1)

            assert res.success is True
            assert len(res.events("retry")) == 1
            assert f"old-{suffix}" not in fake_groups.groups

    def test_budget_is_spent_within_one_deployment(self, fake_groups, health, consensus):
        policy = PolicyOperator(max_retries=1)
        orchestrator = DeploymentOrchestrator(fake_groups, health, consensus, policy)
        new = fake_groups.add("new", 0)
        old = fake_groups.add("old", 2, min_size=2, max_size=2)
        health.verdicts = [False, False]

        with pytest.raises(UnhealthyDeploymentError) as excinfo:
            orchestrator.step_deploy(new, old, 2)

        assert [e["event"] for e in excinfo.value.result.events("retry")] == ["retry"]
        assert fake_groups.groups["old"].desired_capacity == 2
        assert "new" not in fake_groups.groups
