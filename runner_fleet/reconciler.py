"""
Fleet Reconciler Module

Scales the fleet up to a desired number of worker containers. Never scales
down; that is an explicit teardown.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Set

from .errors import ValidationError
from .identity import WorkerIdentity
from .lock import operation_lock

COUNT_PATTERN = re.compile(r'[0-9]+')


def parse_desired_count(value) -> int:
    """
    Validate a desired worker count

    Args:
        value: Non-negative int, or a string of digits

    Returns:
        The count as int

    Raises:
        ValidationError: For anything else (including bools and negatives)
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid number of runners: {value}")
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"Invalid number of runners: {value}")
        return value
    if isinstance(value, str) and COUNT_PATTERN.fullmatch(value):
        return int(value)
    raise ValidationError(f"Invalid number of runners: {value}")


@dataclass
class ReconcileResult:
    added: int
    observed: int
    launched: List[WorkerIdentity] = field(default_factory=list)


class FleetReconciler:
    """Add-only reconciliation of desired vs. running workers"""

    def __init__(self, config, runtime, logger: Optional[logging.Logger] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize reconciler

        Args:
            config: FleetConfig instance
            runtime: DockerRuntime (or compatible) instance
            logger: Logger instance
            clock: Returns the current UTC time (injectable for tests)
        """
        self.config = config
        self.runtime = runtime
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(self, desired_count) -> ReconcileResult:
        """
        Launch workers until the fleet has desired_count running

        Slots are assigned by offset from the observed count. The host-level
        operation lock serializes concurrent invocations.

        Args:
            desired_count: Non-negative int or digit string

        Returns:
            ReconcileResult with the number of workers added

        Raises:
            ValidationError: If desired_count is malformed
            ConcurrentOperation: If another fleet operation holds the lock
            ContainerRuntimeError: If the runtime fails to start a worker
        """
        desired = parse_desired_count(desired_count)

        with operation_lock(self.config.lock_file, self.config.project_dir):
            observed = self.runtime.list_workers()
            observed_count = len(observed)

            if observed_count >= desired:
                self.logger.info(f"Already have {observed_count} runners; nothing to add.")
                return ReconcileResult(added=0, observed=observed_count)

            to_add = desired - observed_count
            self.runtime.ensure_infrastructure()
            if self.config.build_image:
                self.runtime.build_worker_image()

            taken = {handle.name for handle in observed}
            launched = []
            for i in range(1, to_add + 1):
                identity = self._new_identity(observed_count + i, taken)
                taken.add(identity.composed_name)
                self.runtime.launch_worker(identity)
                launched.append(identity)

            self.logger.info(f"Started {to_add} new runner(s); total now {desired}.")
            return ReconcileResult(added=to_add, observed=observed_count, launched=launched)

    def _new_identity(self, slot: int, taken: Set[str]) -> WorkerIdentity:
        """Identity for slot whose name does not collide with any in taken"""
        moment = self.clock()
        identity = WorkerIdentity.create(self.config.service_name, self.config.environment, slot, moment)
        while identity.composed_name in taken:
            moment += timedelta(seconds=1)
            identity = WorkerIdentity.create(self.config.service_name, self.config.environment, slot, moment)
        return identity
