"""HTTP clients for the Consul agent API and the per-node status endpoint."""
import json

import httpx

from .logger import get_logger
from .models import SyncIndexes

PASSING_STATUSES = frozenset({"passing", "warning"})


class ConsulClient:
    """Talks to the local Consul agent for health checks, leader and KV data."""

    def __init__(self, http, kv_prefix="services/"):
        self.http = http
        self.kv_prefix = kv_prefix
        self.logger = get_logger("consul")

    def node_checks(self, node):
        """All health-check entries registered on ``node``."""
        response = self.http.get(f"/v1/health/node/{node}")
        response.raise_for_status()
        return response.json() or []

    def leader(self):
        response = self.http.get("/v1/status/leader")
        response.raise_for_status()
        return response.json() or ""

    def leader_address(self):
        """Host part of the raft leader's ``host:port`` address."""
        leader = self.leader()
        if not leader:
            raise httpx.ConnectError("cluster has no leader")
        return leader.rsplit(":", 1)[0]

    def workload_definition(self, name):
        response = self.http.get(f"/v1/kv/{self.kv_prefix}{name}", params={"raw": "true"})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        try:
            data = json.loads(response.text)
        except json.JSONDecodeError:
            self.logger.warning(f"Workload definition for {name} is not JSON, ignoring it")
            return None
        return data if isinstance(data, dict) else None

    def workload_has_check(self, name):
        definition = self.workload_definition(name) or {}
        return bool(definition.get("check"))


class StatusClient:
    """Reads the consensus state a coordination server publishes about itself."""

    def __init__(self, http, port=7329, path="consul_info"):
        self.http = http
        self.port = port
        self.path = path.lstrip("/")

    def status_info(self, address):
        response = self.http.get(f"http://{address}:{self.port}/{self.path}")
        response.raise_for_status()
        return response.json()

    def sync_indexes(self, address):
        raft = self.status_info(address).get("raft") or {}
        try:
            return SyncIndexes(
                commit_index=int(raft["commit_index"]),
                last_log_index=int(raft["last_log_index"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"status endpoint on {address} returned no raft indexes") from exc
