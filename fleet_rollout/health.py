import time

import botocore.exceptions
import httpx

from .consul import PASSING_STATUSES
from .errors import ProviderError
from .logger import get_logger
from .retry import retry_request


class HealthVerifier:
    """Combines Consul node checks and load balancer status into one verdict per instance"""

    def __init__(self, consul, elb, config):
        self.consul = consul
        self.elb = elb
        self.config = config
        self.logger = get_logger("health")

    def instance_healthy(self, instance, workloads, load_balancers):
        node = instance.node_name or instance.instance_id
        if not self.node_healthy(node, workloads):
            self.logger.warning(f"Instance {instance.instance_id} ({node}) failed node health checks")
            return False
        if load_balancers and not self.load_balancer_healthy(load_balancers, instance):
            self.logger.warning(f"Instance {instance.instance_id} not in service on {', '.join(load_balancers)}")
            return False
        self.logger.info(f"Instance {instance.instance_id} healthy")
        return True

    def _request(self, func, *args):
        return retry_request(func, *args, attempts=self.config.status_retries,
                             delay=self.config.status_retry_delay_s)

    def _checked_workloads(self, workloads):
        """Workloads without a declared check are healthy by definition"""
        return [w for w in workloads if self._request(self.consul.workload_has_check, w)]

    @staticmethod
    def checks_pass(checks, workloads):
        if not checks:
            # Agent has not registered the node yet
            return False
        node_checks = [c for c in checks if not c.get("ServiceName")]
        if any(c.get("Status") not in PASSING_STATUSES for c in node_checks):
            return False
        for workload in workloads:
            scoped = [c for c in checks if c.get("ServiceName") == workload]
            if not scoped or any(c.get("Status") not in PASSING_STATUSES for c in scoped):
                return False
        return True

    def node_healthy(self, node, workloads=(), retry_attempts=None):
        attempts = max(1, retry_attempts if retry_attempts is not None else self.config.health_retry_attempts)
        try:
            required = self._checked_workloads(workloads)
        except httpx.HTTPError as e:
            self.logger.error(f"Could not read workload check definitions: {e}")
            return False

        for attempt in range(1, attempts + 1):
            try:
                checks = self._request(self.consul.node_checks, node)
            except httpx.HTTPError as e:
                self.logger.warning(f"Could not read health checks for {node}: {e}")
                checks = []
            if self.checks_pass(checks, required):
                if required:
                    self.logger.info(f"Workloads {', '.join(required)} healthy on {node}")
                return True
            if attempt < attempts:
                self.logger.info(f"{node} not healthy yet (attempt {attempt} of {attempts})")
                time.sleep(self.config.health_retry_delay_s)
        return False

    def load_balancer_healthy(self, names, instance=None):
        waiter = self.elb.get_waiter("instance_in_service")
        params = {}
        if instance is not None:
            params["Instances"] = [{"InstanceId": instance.instance_id}]
        for name in names:
            try:
                waiter.wait(
                    LoadBalancerName=name,
                    WaiterConfig={
                        "Delay": self.config.elb_wait_delay_s,
                        "MaxAttempts": self.config.elb_wait_max_attempts,
                    },
                    **params,
                )
            except botocore.exceptions.WaiterError as e:
                self.logger.warning(f"Load balancer {name} did not report in service: {e}")
                return False
            except (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError) as e:
                raise ProviderError(f"load balancer {name} check failed: {e}",
                                    instance=getattr(instance, "instance_id", None), cause=e) from e
        return True
