"""
Runner Fleet Package

Lifecycle management for fleets of ephemeral self-hosted CI runners.
"""

__version__ = '0.1.0'

from .config import FleetConfig, TargetScope
from .broker import CredentialBroker, TokenKind
from .identity import WorkerIdentity
from .runner import RunnerBinary
from .runtime import ContainerHandle, DockerRuntime
from .supervisor import SupervisorState, WorkerSupervisor
from .reconciler import FleetReconciler, ReconcileResult
from .teardown import ALL, FleetTeardown, TeardownResult

__all__ = [
    'FleetConfig',
    'TargetScope',
    'CredentialBroker',
    'TokenKind',
    'WorkerIdentity',
    'RunnerBinary',
    'ContainerHandle',
    'DockerRuntime',
    'SupervisorState',
    'WorkerSupervisor',
    'FleetReconciler',
    'ReconcileResult',
    'ALL',
    'FleetTeardown',
    'TeardownResult',
]
