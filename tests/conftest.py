import logging
import sys
from pathlib import Path

import pytest

# Ensure `import runner_fleet` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from runner_fleet.config import FleetConfig
from runner_fleet.errors import InvalidToken, NetworkError
from runner_fleet.runtime import ContainerHandle


class FakeRuntime:
    """In-memory stand-in for DockerRuntime"""

    def __init__(self):
        self.workers = []
        self.launched = []
        self.exec_calls = []
        self.removed = []
        self.failing_exec = set()
        self.infrastructure_up = 0
        self.infrastructure_down = 0
        self.images_built = 0
        self.list_calls = 0

    def add_worker(self, container_id, name):
        self.workers.append(ContainerHandle(container_id, name))

    def list_workers(self):
        self.list_calls += 1
        return list(self.workers)

    def ensure_infrastructure(self):
        self.infrastructure_up += 1

    def build_worker_image(self):
        self.images_built += 1

    def launch_worker(self, identity):
        self.launched.append(identity)
        self.add_worker(f"c{len(self.launched):04d}", identity.composed_name)

    def exec_in(self, container_id, cmd, workdir=None):
        self.exec_calls.append((container_id, list(cmd), workdir))
        return 1 if container_id in self.failing_exec else 0

    def remove_container(self, container_id):
        self.removed.append(container_id)
        self.workers = [w for w in self.workers if w.id != container_id]

    def teardown_infrastructure(self):
        self.infrastructure_down += 1


class FakeBroker:
    """Hands out numbered tokens and records every request"""

    def __init__(self):
        self.acquired = []
        self.fail_kinds = set()
        self.reachable = True
        self.connectivity_checks = 0

    def acquire(self, kind):
        self.acquired.append(kind)
        if kind in self.fail_kinds:
            raise InvalidToken(f"Failed to get {kind.value}")
        return f"{kind.name.lower()}-token-{len(self.acquired)}"

    def check_connectivity(self):
        self.connectivity_checks += 1
        if not self.reachable:
            raise NetworkError("Cannot reach the platform API")


class FakeProcess:
    """Popen stand-in whose first wait() runs a scripted behaviour"""

    pid = 4242

    def __init__(self, behaviour=0):
        self.behaviour = behaviour
        self.returncode = None
        self.terminated = False
        self.killed = False

    def wait(self, timeout=None):
        if self.returncode is not None:
            return self.returncode
        behaviour, self.behaviour = self.behaviour, None
        if callable(behaviour):
            result = behaviour()
            if self.returncode is None:
                self.returncode = result
        elif behaviour is not None:
            self.returncode = behaviour
        return self.returncode

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9


class FakeBinary:
    """RunnerBinary stand-in"""

    DIAG_DIR = '_diag'

    def __init__(self):
        self.configure_exit_code = 0
        self.configure_calls = []
        self.remove_exit_code = 0
        self.remove_calls = []
        self.process = FakeProcess(0)
        self.diagnostic = None

    def configure(self, **kwargs):
        self.configure_calls.append(kwargs)
        return self.configure_exit_code

    def run(self):
        return self.process

    def remove_command(self, token):
        return ['./config.sh', 'remove', '--unattended', '--token', token]

    def remove(self, token):
        self.remove_calls.append(token)
        return self.remove_exit_code

    def latest_diagnostic(self):
        return self.diagnostic


@pytest.fixture
def config(tmp_path) -> FleetConfig:
    return FleetConfig(
        repository='owner/repo',
        access_token='pat-secret',
        service_name='svc',
        environment='dev',
        runner_name='runner-svc-dev-slot01-20250101T000000',
        labels=('self-hosted', 'svc', 'dev', 'slot-01'),
        runner_home=tmp_path / 'actions-runner',
        project_dir=tmp_path,
        lock_file=None,
        stop_timeout=1,
    )


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger('fleet_tests')


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def binary() -> FakeBinary:
    return FakeBinary()


@pytest.fixture
def make_process():
    return FakeProcess
