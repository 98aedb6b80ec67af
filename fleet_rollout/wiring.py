"""Builds a ready-to-use orchestrator from configuration.

Every client handle is created here and injected; nothing below this module
reaches for a shared session or global client.
"""
import boto3
import botocore.exceptions
import httpx
from botocore.config import Config

from .consensus import ConsensusChecker
from .consul import ConsulClient, StatusClient
from .engine import DeploymentOrchestrator
from .errors import ConfigurationError
from .groups import GroupController
from .health import HealthVerifier
from .models import DeploymentConfig
from .prompts import ConsoleOperator

BOTO_CONFIG = Config(
    retries={"max_attempts": 10, "mode": "adaptive"},
    connect_timeout=15,
    read_timeout=60,
)


def aws_session(config):
    try:
        return boto3.session.Session(profile_name=config.aws_profile, region_name=config.region)
    except botocore.exceptions.ProfileNotFound as exc:
        raise ConfigurationError(f"AWS profile {config.aws_profile!r} not found") from exc


def build_orchestrator(config=None, operator=None, session=None):
    """Wire boto3 and httpx clients into a DeploymentOrchestrator.

    ``operator`` defaults to interactive console prompts; pass a
    ``PolicyOperator`` for unattended runs.
    """
    config = config if config else DeploymentConfig.from_env()
    operator = operator if operator else ConsoleOperator()
    session = session if session else aws_session(config)

    autoscaling = session.client("autoscaling", region_name=config.region, config=BOTO_CONFIG)
    ec2 = session.client("ec2", region_name=config.region, config=BOTO_CONFIG)
    elb = session.client("elb", region_name=config.region, config=BOTO_CONFIG)

    timeout = httpx.Timeout(config.status_timeout_s)
    consul = ConsulClient(
        httpx.Client(base_url=config.consul_address, timeout=timeout),
        kv_prefix=config.workload_kv_prefix,
    )
    status = StatusClient(httpx.Client(timeout=timeout), port=config.status_port, path=config.status_path)

    return DeploymentOrchestrator(
        groups=GroupController(autoscaling, ec2, config),
        health=HealthVerifier(consul, elb, config),
        consensus=ConsensusChecker(consul, status, operator, config),
        operator=operator,
        config=config,
    )
