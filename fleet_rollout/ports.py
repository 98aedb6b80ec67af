"""Interfaces the deployment orchestrator is wired against.

Concrete implementations live in ``groups``, ``health``, ``consensus`` and
``prompts``; tests substitute in-memory fakes.
"""
from typing import Protocol


class GroupPort(Protocol):
    def read_group(self, name):
        ...

    def set_size(self, group, desired):
        ...

    def instances_of(self, group):
        ...

    def restore_sizes(self, group, snapshot):
        ...

    def teardown(self, group):
        ...

    def role_of(self, group):
        ...

    def workloads_of(self, group):
        ...


class HealthPort(Protocol):
    def instance_healthy(self, instance, workloads, load_balancers):
        ...


class ConsensusPort(Protocol):
    def leader_sync_indexes(self):
        ...

    def instance_synced(self, instance, leader):
        ...


class OperatorPort(Protocol):
    def begin_deployment(self):
        """Called once when a top-level deployment starts; rollbacks do not call it"""
        ...

    def ask_yes_no(self, question):
        ...

    def ask_choice(self, question, options):
        ...

    def ask_integer(self, question):
        ...
