"""
Worker Identity Module

Deterministic naming and labelling of fleet workers.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

TIMESTAMP_FORMAT = '%Y%m%dT%H%M%S'


def format_slot(slot: int) -> str:
    """Zero-pad a slot ordinal to at least two digits"""
    if slot < 1:
        raise ValueError(f"Slot must be >= 1, got {slot}")
    return f"{slot:02d}"


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp used in worker names (e.g. 20250101T120000)"""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def name_prefix(service_name: str, environment: str) -> str:
    """Prefix shared by every worker container of one fleet"""
    return f"runner-{service_name}-{environment}-slot"


@dataclass(frozen=True)
class WorkerIdentity:
    """Identity of one worker container"""

    service_name: str
    environment: str
    slot: str
    timestamp: str

    @classmethod
    def create(cls, service_name: str, environment: str, slot: int,
               moment: Optional[datetime] = None) -> 'WorkerIdentity':
        return cls(service_name, environment, format_slot(slot), format_timestamp(moment))

    @property
    def composed_name(self) -> str:
        return f"{name_prefix(self.service_name, self.environment)}{self.slot}-{self.timestamp}"

    @property
    def labels(self) -> Tuple[str, ...]:
        return worker_labels(['self-hosted', self.service_name, self.environment, f"slot-{self.slot}"])

    def environment_variables(self) -> dict:
        """Variables injected into the worker container"""
        return {
            'RUNNER_SLOT': self.slot,
            'RUNNER_TIMESTAMP': self.timestamp,
            'RUNNER_NAME': self.composed_name,
            'RUNNER_LABELS': ','.join(self.labels),
        }


def worker_labels(labels: Iterable[str]) -> Tuple[str, ...]:
    """Drop empty and duplicate labels, keeping first-seen order"""
    seen = []
    for label in labels:
        label = label.strip()
        if label and label not in seen:
            seen.append(label)
    return tuple(seen)
