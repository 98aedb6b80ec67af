import time

import botocore.exceptions

from .errors import ConfigurationError, ProviderError, ResourceWaiterError, TeardownError
from .logger import get_logger
from .models import Group, InstanceRef

PROVIDER_EXCEPTIONS = (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError)

# Launch templates that are already gone count as deleted on a teardown retry
_MISSING_TEMPLATE_CODES = {
    "InvalidLaunchTemplateId.NotFound",
    "InvalidLaunchTemplateName.NotFoundException",
    "InvalidLaunchTemplateId.Malformed",
}


def _error_code(exc):
    if isinstance(exc, botocore.exceptions.ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def node_name_of(private_dns_name):
    """Consul registers EC2 nodes by the short form of their private DNS name."""
    if not private_dns_name:
        return None
    return private_dns_name.split(".")[0]


class GroupWaiter:
    """Polls a group until the provider reports it has settled on a size"""

    def __init__(self, controller, timeout_s=300.0, delay_s=15.0):
        self.controller = controller
        self.timeout_s = timeout_s
        self.delay_s = delay_s
        self.logger = get_logger("groups")

    def _attempts(self):
        if self.delay_s <= 0:
            return 1
        return max(1, int(self.timeout_s // self.delay_s))

    def _wait_until(self, name, failure_msg, predicate):
        for attempt in range(self._attempts()):
            if attempt:
                time.sleep(self.delay_s)
            group = self.controller.read_group(name)
            if predicate(group):
                return group
            self.logger.debug(f"{name}: waiting ({failure_msg})")
        raise ResourceWaiterError(failure_msg, group=name)

    def wait_until_group_has_size(self, name, size):
        return self._wait_until(
            name, f"group did not reach desired size of {size}",
            lambda g: len(g.instances) == size,
        )

    def wait_until_no_scaling_activities(self, name):
        return self._wait_until(
            name, "group still performing scaling activities",
            lambda g: not self.controller.scaling_in_progress(g),
        )

    def wait_until_all_instances_running(self, name):
        return self._wait_until(
            name, "group has instances not in running state",
            lambda g: self.controller.all_instances_running(g),
        )

    def wait_until_converged(self, name, size):
        self.wait_until_group_has_size(name, size)
        self.wait_until_no_scaling_activities(name)
        return self.wait_until_all_instances_running(name)

    def wait_until_deleted(self, name):
        for attempt in range(self._attempts()):
            if attempt:
                time.sleep(self.delay_s)
            if not self.controller.group_exists(name):
                return
        raise ResourceWaiterError("group still exists after deletion", group=name)


class GroupController:
    """Reads and resizes Auto Scaling groups one unit at a time"""

    def __init__(self, autoscaling, ec2, config):
        self.autoscaling = autoscaling
        self.ec2 = ec2
        self.config = config
        self.waiter = GroupWaiter(self, config.wait_timeout_s, config.wait_delay_s)
        self.logger = get_logger("groups")

    def _call(self, group_name, action, fn, **kwargs):
        try:
            return fn(**kwargs)
        except PROVIDER_EXCEPTIONS as e:
            self.logger.error(f"{action} failed for {group_name}: {e}")
            raise ProviderError(f"{action} failed: {e}", group=group_name, cause=e) from e

    def _describe(self, name):
        resp = self._call(name, "describe group", self.autoscaling.describe_auto_scaling_groups,
                          AutoScalingGroupNames=[name])
        groups = resp.get("AutoScalingGroups", [])
        return groups[0] if groups else None

    def group_exists(self, name):
        return self._describe(name) is not None

    def read_group(self, name):
        data = self._describe(name)
        if data is None:
            raise ProviderError(f"Auto Scaling group {name} not found", group=name)
        return self._group_from(data)

    @staticmethod
    def _group_from(data):
        launch_template = data.get("LaunchTemplate")
        if launch_template is None:
            mixed = data.get("MixedInstancesPolicy") or {}
            launch_template = mixed.get("LaunchTemplate", {}).get("LaunchTemplateSpecification")
        return Group(
            name=data["AutoScalingGroupName"],
            min_size=data["MinSize"],
            max_size=data["MaxSize"],
            desired_capacity=data["DesiredCapacity"],
            instances=[InstanceRef(i["InstanceId"]) for i in data.get("Instances", [])],
            launch_template=launch_template,
            launch_configuration=data.get("LaunchConfigurationName"),
            load_balancer_names=list(data.get("LoadBalancerNames", [])),
            tags={t["Key"]: t.get("Value", "") for t in data.get("Tags", [])},
        )

    def _describe_instances(self, group_name, instance_ids):
        if not instance_ids:
            return {}
        resp = self._call(group_name, "describe instances", self.ec2.describe_instances,
                          InstanceIds=list(instance_ids))
        found = {}
        for reservation in resp.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                found[inst["InstanceId"]] = inst
        return found

    def instances_of(self, group):
        group = self.read_group(group.name)
        details = self._describe_instances(group.name, group.instance_ids)
        instances = []
        for instance_id in group.instance_ids:
            inst = details.get(instance_id, {})
            instances.append(InstanceRef(
                instance_id=instance_id,
                private_ip=inst.get("PrivateIpAddress"),
                node_name=node_name_of(inst.get("PrivateDnsName")),
            ))
        return instances

    def scaling_in_progress(self, group):
        resp = self._call(group.name, "describe scaling activities",
                          self.autoscaling.describe_scaling_activities,
                          AutoScalingGroupName=group.name, MaxRecords=20)
        return any("EndTime" not in a for a in resp.get("Activities", []))

    def all_instances_running(self, group):
        details = self._describe_instances(group.name, group.instance_ids)
        return all(
            details.get(i, {}).get("State", {}).get("Name") == "running"
            for i in group.instance_ids
        )

    def role_of(self, group):
        return group.tags.get(self.config.role_tag)

    def workloads_of(self, group):
        raw = group.tags.get(self.config.workloads_tag, "")
        return [w.strip() for w in raw.split(",") if w.strip()]

    def set_size(self, group, desired):
        """Converge the group's desired capacity to ``desired`` and wait for it to settle"""
        if desired < 0:
            raise ConfigurationError(f"cannot size {group.name} to {desired}")
        current = self.read_group(group.name)
        if desired > current.max_size:
            raise ConfigurationError(
                f"cannot size {group.name} to {desired}: above its maximum of {current.max_size}"
            )

        params = {}
        if current.desired_capacity != desired:
            params["DesiredCapacity"] = desired
        if desired < current.min_size:
            params["MinSize"] = desired

        if params:
            self.logger.info(f"Sizing {group.name} from {current.desired_capacity} to {desired}")
            self._call(group.name, "update group", self.autoscaling.update_auto_scaling_group,
                       AutoScalingGroupName=group.name, **params)
        else:
            self.logger.debug(f"{group.name} already at desired capacity {desired}")
        return self.waiter.wait_until_converged(group.name, desired)

    def restore_sizes(self, group, snapshot):
        """Put back a group's min/max/desired exactly as captured in ``snapshot``"""
        current = self.read_group(group.name)
        wanted = {
            "MinSize": snapshot.min_size,
            "MaxSize": snapshot.max_size,
            "DesiredCapacity": snapshot.desired_capacity,
        }
        have = {
            "MinSize": current.min_size,
            "MaxSize": current.max_size,
            "DesiredCapacity": current.desired_capacity,
        }
        if wanted != have:
            self.logger.info(f"Restoring {group.name} sizes to {wanted}")
            self._call(group.name, "update group", self.autoscaling.update_auto_scaling_group,
                       AutoScalingGroupName=group.name, **wanted)
        return self.waiter.wait_until_converged(group.name, snapshot.desired_capacity)

    def _delete_launch_template(self, group):
        template = group.launch_template or {}
        try:
            if template.get("LaunchTemplateId"):
                self.ec2.delete_launch_template(LaunchTemplateId=template["LaunchTemplateId"])
            elif template.get("LaunchTemplateName"):
                self.ec2.delete_launch_template(LaunchTemplateName=template["LaunchTemplateName"])
            elif group.launch_configuration:
                self.autoscaling.delete_launch_configuration(
                    LaunchConfigurationName=group.launch_configuration
                )
        except PROVIDER_EXCEPTIONS as e:
            if _error_code(e) in _MISSING_TEMPLATE_CODES:
                return
            raise ProviderError(f"delete launch template failed: {e}", group=group.name, cause=e) from e

    def _delete_group_and_launch_template(self, group):
        if self.group_exists(group.name):
            self.logger.info(f"Deleting Auto Scaling group {group.name}")
            self._call(group.name, "delete group", self.autoscaling.delete_auto_scaling_group,
                       AutoScalingGroupName=group.name, ForceDelete=True)
            self.waiter.wait_until_deleted(group.name)
        self._delete_launch_template(group)

    def teardown(self, group):
        """Delete the group and its launch template, retrying a few times before giving up"""
        # Launch template comes from the record passed in; the provider copy is
        # gone once the group delete has gone through.
        attempts = max(1, self.config.teardown_attempts)
        for attempt in range(1, attempts + 1):
            try:
                self._delete_group_and_launch_template(group)
                self.logger.info(f"Deleted {group.name} and its launch template")
                return
            except ProviderError as e:
                if attempt >= attempts:
                    self.logger.error(f"Unable to delete {group.name} after {attempt} attempts")
                    raise TeardownError(
                        f"unable to delete group {group.name}: {e}", group=group.name, cause=e
                    ) from e
                backoff_time = min((2 ** (attempt - 1)) * self.config.teardown_backoff_s, 30.0)
                self.logger.warning(
                    f"Deletion of {group.name} unsuccessful (attempt {attempt} of {attempts}), "
                    f"retrying in {backoff_time}s"
                )
                time.sleep(backoff_time)
