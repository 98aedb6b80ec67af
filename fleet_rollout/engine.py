from .errors import ConfigurationError, ConsulServerNotSyncedError, StepFailure, UnhealthyDeploymentError
from .failure import FailureHandler
from .interrupts import abort_on_interrupt
from .logger import get_logger
from .models import DeploymentConfig, DeploymentPlan, DeploymentResult, Role, SizeSnapshot
from .ports import ConsensusPort, GroupPort, HealthPort, OperatorPort


class DeploymentOrchestrator:
    """Swaps a running group for a new one, one instance at a time"""

    def __init__(self, groups: GroupPort, health: HealthPort, consensus: ConsensusPort,
                 operator: OperatorPort, config: DeploymentConfig = None):
        self.groups = groups
        self.health = health
        self.consensus = consensus
        self.operator = operator
        self.config = config if config else DeploymentConfig()
        self.failure_handler = FailureHandler(operator, self.rollback)
        self.logger = get_logger("engine")

    def plan(self, target, source, target_size, rollback=False):
        """Validate the request and capture the source group's sizes before anything changes"""
        if target_size < 0:
            raise ConfigurationError(f"target_size must be >= 0, got {target_size}")
        if target_size > target.max_size:
            raise ConfigurationError(
                f"target_size {target_size} exceeds the maximum size of {target.name} ({target.max_size})"
            )

        role = Role.SERVER if self.groups.role_of(source) == Role.SERVER.value else Role.CLIENT
        return DeploymentPlan(
            source_group=source.name,
            target_group=target.name,
            target_size=target_size,
            rollback_snapshot=SizeSnapshot.of(source),
            role=role,
            workloads=tuple(self.groups.workloads_of(source)),
            load_balancers=tuple(source.load_balancer_names),
            target_start=min(target.desired_capacity, target_size),
            source_start=source.desired_capacity,
            rollback=rollback,
        )

    def step_deploy(self, target_group, source_group, target_size, rollback=False):
        """Shift ``target_size`` instances from ``source_group`` to ``target_group``, then delete the source"""
        # Callers may hold stale records
        target = self.groups.read_group(target_group.name)
        source = self.groups.read_group(source_group.name)
        plan = self.plan(target, source, target_size, rollback=rollback)

        result = DeploymentResult(target_group=target.name, source_group=source.name, rolled_back=rollback)
        self.logger.info(
            f"Starting {'rollback' if rollback else 'step deployment'}: {source.name} -> {target.name} "
            f"({plan.step_count} steps, target size {target_size}, role {plan.role.value})"
        )
        result.record("start", target_size=target_size, role=plan.role.value, snapshot=plan.rollback_snapshot)

        if rollback:
            self._run_steps(plan, target, source, result)
            self._drain(source, result)
        else:
            self.operator.begin_deployment()
            with abort_on_interrupt(self.operator):
                self._run_steps(plan, target, source, result)
                self._drain(source, result)

        result.success = True
        self.logger.info(f"SUCCESS: {target.name} at {target_size} instances, {source.name} removed")
        return result

    def rollback(self, target_group, source_group, snapshot):
        """Drive the source group back to its captured size and drain the target group"""
        result = self.step_deploy(source_group, target_group, snapshot.desired_capacity, rollback=True)
        self.groups.restore_sizes(source_group, snapshot)
        self.logger.info(f"Rollback completed, {source_group.name} restored to {snapshot}")
        return result

    def _scales_up(self, plan, step):
        return step <= plan.target_size - plan.target_start

    def _scales_down(self, plan, step):
        return step <= plan.source_start

    def _run_steps(self, plan, target, source, result):
        for step in range(1, plan.step_count + 1):
            known = None
            while True:
                try:
                    # Instances already in the target group before this step began
                    # are never mistaken for the one it adds, even on retry.
                    if known is None and self._scales_up(plan, step):
                        known = set(self.groups.read_group(target.name).instance_ids)
                    self._step(plan, step, target, source, known, result)
                    break
                except StepFailure as e:
                    result.record("failure", step=step, outcome=e.outcome.value, error=str(e))
                    if plan.rollback:
                        self.logger.error(f"Rollback step {step} failed: {e}")
                        raise
                    try:
                        self.failure_handler.decide(e, target, source, plan.rollback_snapshot)
                    except StepFailure as raised:
                        # The handler re-raises the original error only after a completed rollback
                        if raised is e:
                            result.record("rollback", step=step, group=source.name,
                                          snapshot=plan.rollback_snapshot)
                            e.result = result
                        raise
                    result.record("retry", step=step)
                    self.logger.info(f"Retrying step {step}/{plan.step_count}")
            result.steps_completed = step
            self.logger.info(f"Step {step}/{plan.step_count} completed")

    def _step(self, plan, step, target, source, known, result):
        if self._scales_up(plan, step):
            size = plan.target_size_at(step)
            self.logger.info(f"▲ Scaling up {target.name} to {size}")
            self.groups.set_size(target, size)
            result.record("scale_up", step=step, group=target.name, size=size)

            instance = self._new_instance(target, known)
            self._verify(plan, target, instance)
            result.record("verified", step=step, instance=instance.instance_id)

        if self._scales_down(plan, step):
            size = plan.source_size_at(step)
            self.logger.info(f"▼ Scaling down {source.name} to {size}")
            self.groups.set_size(source, size)
            result.record("scale_down", step=step, group=source.name, size=size)

    def _new_instance(self, target, known):
        fresh = [i for i in self.groups.instances_of(target) if i.instance_id not in known]
        if not fresh:
            raise UnhealthyDeploymentError(
                "no new instance appeared after scaling up", group=target.name
            )
        return fresh[0]

    def _verify(self, plan, target, instance):
        self.logger.info(f"Performing health check on new instance {instance.instance_id}")
        if not self.health.instance_healthy(instance, plan.workloads, plan.load_balancers):
            raise UnhealthyDeploymentError(
                "new group encountered unhealthy state during scaling up",
                group=target.name, instance=instance.instance_id,
            )

        if plan.role is Role.SERVER:
            leader = self.consensus.leader_sync_indexes()
            if not self.consensus.instance_synced(instance, leader):
                raise ConsulServerNotSyncedError(
                    "new Consul server is not synced with the leader",
                    group=target.name, instance=instance.instance_id,
                )

    def _drain(self, source, result):
        self.logger.info(f"Deleting old group {source.name}")
        self.groups.teardown(source)
        result.record("teardown", group=source.name)
