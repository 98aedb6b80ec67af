import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import ConfigurationError, StepOutcome


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


@dataclass(frozen=True)
class InstanceRef:
    instance_id: str
    private_ip: Optional[str] = None
    node_name: Optional[str] = None  # Consul node name, derived from the private DNS name


@dataclass
class Group:
    name: str
    min_size: int
    max_size: int
    desired_capacity: int
    instances: List[InstanceRef] = field(default_factory=list)
    launch_template: Optional[dict] = None  # {"LaunchTemplateId": ..., "Version": ...}
    launch_configuration: Optional[str] = None  # legacy launch configuration name
    load_balancer_names: List[str] = field(default_factory=list)
    tags: dict = field(default_factory=dict)

    @property
    def instance_ids(self):
        return [i.instance_id for i in self.instances]


@dataclass(frozen=True)
class SyncIndexes:
    commit_index: int
    last_log_index: int

    def covers(self, other):
        """True when both indexes are at or beyond ``other``'s."""
        return (self.commit_index >= other.commit_index
                and self.last_log_index >= other.last_log_index)


@dataclass(frozen=True)
class SizeSnapshot:
    """Size configuration of a group, captured once before a deployment mutates it"""
    min_size: int
    max_size: int
    desired_capacity: int

    @classmethod
    def of(cls, group):
        return cls(group.min_size, group.max_size, group.desired_capacity)


@dataclass(frozen=True)
class DeploymentPlan:
    source_group: str
    target_group: str
    target_size: int
    rollback_snapshot: SizeSnapshot
    role: Role
    workloads: Tuple[str, ...] = ()
    load_balancers: Tuple[str, ...] = ()
    target_start: int = 0  # target desired capacity when the plan was made
    source_start: int = 0  # source desired capacity when the plan was made
    rollback: bool = False  # True for the sub-invocation that undoes a failed deployment

    @property
    def step_count(self):
        if self.target_size == 0:
            return 0
        return max(self.target_size - self.target_start, self.source_start, 0)

    def target_size_at(self, step):
        return min(self.target_start + step, self.target_size)

    def source_size_at(self, step):
        return max(self.source_start - step, 0)


def _env_int(var, default):
    value = os.environ.get(var)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{var} must be an integer, got {value!r}") from exc


def _env_float(var, default):
    value = os.environ.get(var)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{var} must be a number, got {value!r}") from exc


@dataclass
class DeploymentConfig:
    """Configuration for deployment behavior"""
    region: str = "us-east-1"
    aws_profile: Optional[str] = None
    consul_address: str = "http://127.0.0.1:8500"
    status_port: int = 7329  # per-node status endpoint exposing raft indexes
    status_path: str = "consul_info"
    status_timeout_s: float = 5.0
    role_tag: str = "fleet:role"
    workloads_tag: str = "fleet:workloads"  # comma-separated workload names
    workload_kv_prefix: str = "services/"
    wait_timeout_s: float = 300.0  # Max time for a group to converge on a new size
    wait_delay_s: float = 15.0
    health_retry_attempts: int = 2  # Node health reads before declaring failure
    health_retry_delay_s: float = 6.0
    elb_wait_delay_s: int = 15
    elb_wait_max_attempts: int = 40
    status_retries: int = 3  # Status endpoint attempts before asking the operator
    status_retry_delay_s: float = 1.0
    sync_poll_attempts: int = 50  # How many times to re-read a lagging server
    sync_poll_delay_s: float = 5.0
    teardown_attempts: int = 3
    teardown_backoff_s: float = 5.0

    @classmethod
    def from_env(cls):
        """Build a config from FLEET_ROLLOUT_* variables, falling back to defaults"""
        d = cls()
        return cls(
            region=os.environ.get("AWS_REGION", d.region),
            aws_profile=os.environ.get("AWS_PROFILE") or None,
            consul_address=os.environ.get("CONSUL_HTTP_ADDR", d.consul_address),
            status_port=_env_int("FLEET_ROLLOUT_STATUS_PORT", d.status_port),
            status_path=os.environ.get("FLEET_ROLLOUT_STATUS_PATH", d.status_path),
            status_timeout_s=_env_float("FLEET_ROLLOUT_STATUS_TIMEOUT", d.status_timeout_s),
            role_tag=os.environ.get("FLEET_ROLLOUT_ROLE_TAG", d.role_tag),
            workloads_tag=os.environ.get("FLEET_ROLLOUT_WORKLOADS_TAG", d.workloads_tag),
            workload_kv_prefix=os.environ.get("FLEET_ROLLOUT_WORKLOAD_KV_PREFIX", d.workload_kv_prefix),
            wait_timeout_s=_env_float("FLEET_ROLLOUT_WAIT_TIMEOUT", d.wait_timeout_s),
            wait_delay_s=_env_float("FLEET_ROLLOUT_WAIT_DELAY", d.wait_delay_s),
            health_retry_attempts=_env_int("FLEET_ROLLOUT_HEALTH_ATTEMPTS", d.health_retry_attempts),
            health_retry_delay_s=_env_float("FLEET_ROLLOUT_HEALTH_DELAY", d.health_retry_delay_s),
            elb_wait_delay_s=_env_int("FLEET_ROLLOUT_ELB_DELAY", d.elb_wait_delay_s),
            elb_wait_max_attempts=_env_int("FLEET_ROLLOUT_ELB_ATTEMPTS", d.elb_wait_max_attempts),
            status_retries=_env_int("FLEET_ROLLOUT_STATUS_RETRIES", d.status_retries),
            status_retry_delay_s=_env_float("FLEET_ROLLOUT_STATUS_RETRY_DELAY", d.status_retry_delay_s),
            sync_poll_attempts=_env_int("FLEET_ROLLOUT_SYNC_ATTEMPTS", d.sync_poll_attempts),
            sync_poll_delay_s=_env_float("FLEET_ROLLOUT_SYNC_DELAY", d.sync_poll_delay_s),
            teardown_attempts=_env_int("FLEET_ROLLOUT_TEARDOWN_ATTEMPTS", d.teardown_attempts),
            teardown_backoff_s=_env_float("FLEET_ROLLOUT_TEARDOWN_BACKOFF", d.teardown_backoff_s),
        )


@dataclass
class DeploymentResult:
    """Results from a step deployment run"""
    target_group: str
    source_group: str
    success: bool = False
    steps_completed: int = 0
    rolled_back: bool = False  # Whether this run was a rollback of another deployment
    history: list = field(default_factory=list)  # Ordered deployment events

    def record(self, event, **details):
        entry = {"event": event}
        entry.update(details)
        self.history.append(entry)
        return entry

    def events(self, name):
        return [e for e in self.history if e["event"] == name]
