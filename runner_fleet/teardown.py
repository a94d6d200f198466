"""
Fleet Teardown Module

Deregisters and removes worker containers, then brings shared
infrastructure down once the fleet is empty.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from .broker import TokenKind
from .errors import ContainerRuntimeError, RemovalFailed
from .lock import operation_lock
from .runtime import ContainerHandle

ALL = 'ALL'


@dataclass
class TeardownResult:
    removed: List[str] = field(default_factory=list)
    removal_failures: List[RemovalFailed] = field(default_factory=list)


class FleetTeardown:
    """Remove selected (or all) workers from the platform and the runtime"""

    def __init__(self, config, runtime, broker, binary,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize teardown coordinator

        Args:
            config: FleetConfig instance
            runtime: DockerRuntime (or compatible) instance
            broker: CredentialBroker (or compatible) instance
            binary: RunnerBinary, used for the in-container remove command
            logger: Logger instance
        """
        self.config = config
        self.runtime = runtime
        self.broker = broker
        self.binary = binary
        self.logger = logger or logging.getLogger(__name__)

    def _resolve(self, worker_ids) -> List[str]:
        if worker_ids == ALL:
            return [handle.id for handle in self.runtime.list_workers()]
        if isinstance(worker_ids, (str, ContainerHandle)):
            worker_ids = [worker_ids]

        ids = []
        for worker in worker_ids:
            worker_id = worker.id if isinstance(worker, ContainerHandle) else str(worker)
            if worker_id and worker_id not in ids:
                ids.append(worker_id)
        return ids

    def teardown(self, worker_ids: Union[str, Iterable[Union[str, ContainerHandle]]] = ALL) -> TeardownResult:
        """
        Deregister and force-remove workers

        One removal token is shared by every worker in the call. A failed
        in-container removal is logged and the container is removed anyway.

        Args:
            worker_ids: Container ids/handles, or ALL for the current fleet

        Returns:
            TeardownResult listing removed ids and removal failures

        Raises:
            BrokerUnreachable: If no removal token could be obtained
            ConcurrentOperation: If another fleet operation holds the lock
        """
        result = TeardownResult()

        with operation_lock(self.config.lock_file, self.config.project_dir):
            ids = self._resolve(worker_ids)
            if not ids:
                self.logger.info("No runners selected for teardown.")
                return result

            self.logger.info("Fetching removal token...")
            token = self.broker.acquire(TokenKind.REMOVAL)

            self.logger.info(f"Removing runners: {' '.join(ids)}")
            for container_id in ids:
                self.logger.debug(f"Removing runner in container {container_id}...")
                failure = self._deregister(container_id, token)
                if failure is not None:
                    self.logger.warning(str(failure))
                    result.removal_failures.append(failure)

                self.runtime.remove_container(container_id)
                result.removed.append(container_id)

            if not self.runtime.list_workers():
                self.runtime.teardown_infrastructure()

        return result

    def _deregister(self, container_id: str, token: str) -> Optional[RemovalFailed]:
        try:
            exit_code = self.runtime.exec_in(
                container_id,
                self.binary.remove_command(token),
                workdir=str(self.config.runner_home),
            )
        except ContainerRuntimeError as e:
            return RemovalFailed(f"Failed to remove runner in {container_id}: {e}")

        if exit_code != 0:
            return RemovalFailed(f"Failed to remove runner in {container_id} (exit {exit_code})")
        return None
