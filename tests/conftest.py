"""Shared fixtures: in-memory stand-ins for the cloud, health and consensus ports."""
from dataclasses import replace

import pytest

from fleet_rollout.engine import DeploymentOrchestrator
from fleet_rollout.errors import OperatorUnavailable, ProviderError, TeardownError
from fleet_rollout.models import DeploymentConfig, Group, InstanceRef, SyncIndexes


class FakeGroups:
    """Auto Scaling groups held in a dict; records every mutating call in order."""

    def __init__(self):
        self.groups = {}
        self.calls = []
        self.failures = {}
        self.teardown_failures = []
        self._counter = 0

    def _new_instance(self, name):
        self._counter += 1
        return InstanceRef(f"{name}-i{self._counter}", f"10.0.0.{self._counter}", f"ip-10-0-0-{self._counter}")

    def add(self, name, desired, min_size=0, max_size=10, role=None, workloads=(), load_balancers=()):
        tags = {}
        if role:
            tags["fleet:role"] = role
        if workloads:
            tags["fleet:workloads"] = ",".join(workloads)
        group = Group(name, min_size, max_size, desired, [], load_balancer_names=list(load_balancers), tags=tags)
        group.instances = [self._new_instance(name) for _ in range(desired)]
        self.groups[name] = group
        return replace(group, instances=list(group.instances))

    def fail_next(self, name, size, error):
        self.failures.setdefault((name, size), []).append(error)

    def read_group(self, name):
        if name not in self.groups:
            raise ProviderError(f"Auto Scaling group {name} not found", group=name)
        group = self.groups[name]
        return replace(group, instances=list(group.instances), tags=dict(group.tags))

    def _resize(self, group, desired):
        while len(group.instances) < desired:
            group.instances.append(self._new_instance(group.name))
        while len(group.instances) > desired:
            group.instances.pop(0)
        group.desired_capacity = desired

    def set_size(self, group, desired):
        self.calls.append(("set_size", group.name, desired))
        pending = self.failures.get((group.name, desired))
        if pending:
            raise pending.pop(0)
        stored = self.groups[group.name]
        assert 0 <= desired <= stored.max_size
        if desired < stored.min_size:
            stored.min_size = desired
        self._resize(stored, desired)
        return self.read_group(group.name)

    def instances_of(self, group):
        return list(self.groups[group.name].instances)

    def restore_sizes(self, group, snapshot):
        self.calls.append(("restore_sizes", group.name, snapshot))
        stored = self.groups[group.name]
        stored.min_size = snapshot.min_size
        stored.max_size = snapshot.max_size
        self._resize(stored, snapshot.desired_capacity)
        return self.read_group(group.name)

    def teardown(self, group):
        self.calls.append(("teardown", group.name))
        if self.teardown_failures:
            raise self.teardown_failures.pop(0)
        del self.groups[group.name]

    def role_of(self, group):
        return group.tags.get("fleet:role")

    def workloads_of(self, group):
        raw = group.tags.get("fleet:workloads", "")
        return [w for w in raw.split(",") if w]

    def sizes(self, name):
        return [c[2] for c in self.calls if c[0] == "set_size" and c[1] == name]


class StubHealth:
    def __init__(self):
        self.verdicts = []
        self.calls = []

    def instance_healthy(self, instance, workloads, load_balancers):
        self.calls.append((instance.instance_id, tuple(workloads), tuple(load_balancers)))
        if self.verdicts:
            verdict = self.verdicts.pop(0)
            if isinstance(verdict, BaseException):
                raise verdict
            return verdict
        return True


class StubConsensus:
    def __init__(self):
        self.leader = SyncIndexes(100, 100)
        self.synced = []
        self.calls = []

    def leader_sync_indexes(self):
        return self.leader

    def instance_synced(self, instance, leader):
        self.calls.append((instance.instance_id, leader))
        return self.synced.pop(0) if self.synced else True


class ScriptedOperator:
    def __init__(self, choices=(), answers=(), integers=()):
        self.choices = list(choices)
        self.answers = list(answers)
        self.integers = list(integers)
        self.questions = []
        self.deployments = 0

    def begin_deployment(self):
        self.deployments += 1

    def ask_choice(self, question, options):
        self.questions.append(question)
        if not self.choices:
            raise OperatorUnavailable(question)
        return self.choices.pop(0)

    def ask_yes_no(self, question):
        self.questions.append(question)
        if not self.answers:
            raise OperatorUnavailable(question)
        return self.answers.pop(0)

    def ask_integer(self, question):
        self.questions.append(question)
        if not self.integers:
            raise OperatorUnavailable(question)
        return self.integers.pop(0)


@pytest.fixture
def fake_groups():
    return FakeGroups()


@pytest.fixture
def health():
    return StubHealth()


@pytest.fixture
def consensus():
    return StubConsensus()


@pytest.fixture
def operator():
    return ScriptedOperator()


@pytest.fixture
def quick_config():
    """Config with every delay zeroed so retry loops run instantly."""
    return DeploymentConfig(
        wait_timeout_s=0, wait_delay_s=0, health_retry_delay_s=0, status_retry_delay_s=0,
        sync_poll_attempts=1, sync_poll_delay_s=0, teardown_backoff_s=0, elb_wait_delay_s=0,
        elb_wait_max_attempts=1,
    )


@pytest.fixture
def orchestrator(fake_groups, health, consensus, operator):
    return DeploymentOrchestrator(fake_groups, health, consensus, operator)


@pytest.fixture
def teardown_error():
    return TeardownError("unable to delete group old", group="old")
