import time

import httpx

from .logger import get_logger
from .models import SyncIndexes
from .retry import retry_request


class ConsensusChecker:
    """Compares a new coordination server's raft position against the leader's.

    When the status endpoint stays unreachable after the retry budget, the
    operator is asked to read the values off the node instead.
    """

    def __init__(self, consul, status, operator, config):
        self.consul = consul
        self.status = status
        self.operator = operator
        self.config = config
        self.logger = get_logger("consensus")

    def _request(self, func, *args, attempts=None):
        return retry_request(
            func, *args,
            attempts=attempts if attempts is not None else self.config.status_retries,
            delay=self.config.status_retry_delay_s,
        )

    def leader_sync_indexes(self):
        address = None
        try:
            address = self._request(self.consul.leader_address)
            indexes = self._request(self.status.sync_indexes, address)
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning(f"Could not read leader sync indexes: {e}")
            return self._prompt_leader_indexes(address)
        self.logger.info(
            f"Leader {address} at commit_index={indexes.commit_index} "
            f"last_log_index={indexes.last_log_index}"
        )
        return indexes

    def _prompt_leader_indexes(self, address):
        where = f"the leader ({address})" if address else "the leader"
        self.logger.warning(f"Manual input required: run `consul info` on {where}")
        commit_index = self.operator.ask_integer(f"Enter {where}'s commit_index")
        last_log_index = self.operator.ask_integer(f"Enter {where}'s last_log_index")
        return SyncIndexes(commit_index, last_log_index)

    def instance_synced(self, instance, leader, retries=None):
        address = instance.private_ip
        if not address:
            self.logger.warning(f"{instance.instance_id} has no private address to query")
            return self._prompt_instance_synced(instance, leader)
        attempts = max(1, self.config.sync_poll_attempts)
        self.logger.info(f"Waiting for {instance.instance_id} to sync data from the leader")

        for attempt in range(1, attempts + 1):
            try:
                indexes = self._request(self.status.sync_indexes, address, attempts=retries)
            except (httpx.HTTPError, ValueError) as e:
                self.logger.warning(f"Cannot read sync state of {instance.instance_id}: {e}")
                return self._prompt_instance_synced(instance, leader)

            if indexes.covers(leader):
                self.logger.info(f"{instance.instance_id} synced with leader")
                return True

            self.logger.debug(
                f"{instance.instance_id} at {indexes.commit_index}/{indexes.last_log_index}, "
                f"leader at {leader.commit_index}/{leader.last_log_index}"
            )
            if attempt < attempts:
                time.sleep(self.config.sync_poll_delay_s)

        self.logger.warning(f"{instance.instance_id} did not catch up with the leader")
        return False

    def _prompt_instance_synced(self, instance, leader):
        self.logger.warning(
            f"Manual input required: run `consul info` on {instance.private_ip or instance.instance_id} and make sure "
            f"commit_index >= {leader.commit_index} and last_log_index >= {leader.last_log_index}"
        )
        return self.operator.ask_yes_no(f"Has {instance.instance_id} synced with the leader?")
