"""
Container Runtime Module

Docker and Docker Compose operations used to launch, inspect and remove
worker containers.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .errors import ContainerRuntimeError
from .identity import WorkerIdentity, name_prefix


def _redact(cmd: Sequence[str]) -> List[str]:
    """Mask the value following any --token flag"""
    redacted = list(cmd)
    for i, arg in enumerate(redacted[:-1]):
        if arg == '--token':
            redacted[i + 1] = '***'
    return redacted


@dataclass(frozen=True)
class ContainerHandle:
    """Running worker container as reported by the runtime"""

    id: str
    name: str

    def __str__(self) -> str:
        return f"{self.id}\t{self.name}"


class DockerRuntime:
    """Docker CLI wrapper scoped to one fleet"""

    FORWARDED_KEYS = ('REPO', 'ORG', 'ACCESS_TOKEN', 'GITHUB_API_URL', 'GITHUB_URL')

    def __init__(self, config, logger: Optional[logging.Logger] = None):
        """
        Initialize runtime wrapper

        Args:
            config: FleetConfig instance
            logger: Logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._compose_cmd: Optional[List[str]] = None

    @property
    def name_filter(self) -> str:
        return name_prefix(self.config.service_name, self.config.environment)

    @property
    def project_name(self) -> str:
        """Compose project of this fleet (one per service and environment)"""
        return f"{self.config.service_name}-{self.config.environment}-docker-compose".lower()

    def _run(self, cmd: Sequence[str], check: bool = True,
             env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        self.logger.debug(f"$ {' '.join(_redact(cmd))}")
        try:
            result = subprocess.run(list(cmd), capture_output=True, text=True,
                                    cwd=self.config.project_dir, env=env)
        except FileNotFoundError as e:
            raise ContainerRuntimeError(f"{cmd[0]} not found: {e}") from e

        if check and result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise ContainerRuntimeError(
                f"Command failed ({result.returncode}): {' '.join(cmd[:3])}... {stderr}"
            )
        return result

    def _compose_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            'SERVICE_NAME': self.config.service_name,
            'ENVIRONMENT': self.config.environment,
            'REPO': self.config.repository,
            'ORG': self.config.organization,
            'ACCESS_TOKEN': self.config.access_token,
            'GITHUB_API_URL': self.config.api_url,
            'GITHUB_URL': self.config.web_url,
        })
        return env

    def compose_command(self) -> List[str]:
        """
        Compose invocation, detected on first use

        Prefers the ``docker compose`` plugin (v2), then a standalone
        docker-compose binary. The project name is scoped to the fleet's
        service and environment.

        Raises:
            ContainerRuntimeError: If neither is available
        """
        if self._compose_cmd is None:
            if self._run(['docker', 'compose', 'version'], check=False).returncode == 0:
                cmd = ['docker', 'compose']
            elif shutil.which('docker-compose'):
                cmd = ['docker-compose']
            else:
                raise ContainerRuntimeError("docker-compose or 'docker compose' is required.")
            if self.config.compose_file:
                cmd += ['-f', str(self.config.compose_file)]
            cmd += ['-p', self.project_name]
            self._compose_cmd = cmd
        return list(self._compose_cmd)

    def _compose(self, *args: str) -> subprocess.CompletedProcess:
        return self._run(self.compose_command() + list(args), env=self._compose_env())

    def check_available(self):
        """
        Ensure the Docker daemon answers and Compose is installed

        Raises:
            ContainerRuntimeError: If Docker is not running or Compose is missing
        """
        if self._run(['docker', 'info'], check=False).returncode != 0:
            raise ContainerRuntimeError("Docker does not appear to be running or accessible.")
        self.compose_command()

    def list_workers(self) -> List[ContainerHandle]:
        """
        List running worker containers of this fleet

        Always queries the runtime; nothing is cached.

        Returns:
            ContainerHandle per running container whose name starts with the
            fleet prefix
        """
        result = self._run([
            'docker', 'ps',
            '--filter', f'name={self.name_filter}',
            '--format', '{{.ID}}\t{{.Names}}',
        ])

        handles = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            container_id, _, name = line.partition('\t')
            name = name.strip()
            # docker's name filter is a substring match
            if name.startswith(self.name_filter):
                handles.append(ContainerHandle(container_id.strip(), name))
        return handles

    def ensure_infrastructure(self):
        """Bring up the shared cache service and network (idempotent)"""
        self.logger.info("Bringing up cache container (and dependencies) via compose...")
        self._compose('up', '-d', self.config.cache_service)

    def build_worker_image(self):
        self.logger.info(f"Building runner image for service '{self.config.runner_service}'...")
        self._compose('build', self.config.runner_service)

    def launch_worker(self, identity: WorkerIdentity):
        """
        Start one detached worker container on the compose network

        Args:
            identity: Identity injected into the container environment

        Raises:
            ContainerRuntimeError: If the container cannot be started
        """
        args = ['run', '-d', '--no-deps', '--name', identity.composed_name]
        for key, value in identity.environment_variables().items():
            args += ['-e', f'{key}={value}']
        # values come from the compose process environment, keeping the token off the command line
        for key in self.FORWARDED_KEYS:
            args += ['-e', key]
        args.append(self.config.runner_service)

        self.logger.info(f"Starting runner container via compose run: {identity.composed_name}")
        self._compose(*args)

    def exec_in(self, container_id: str, cmd: Sequence[str], workdir: Optional[str] = None) -> int:
        """
        Run a command inside a running container

        Returns:
            Exit code of the command (non-zero on docker errors too)
        """
        docker_cmd = ['docker', 'exec']
        if workdir:
            docker_cmd += ['-w', str(workdir)]
        docker_cmd.append(container_id)
        docker_cmd += list(cmd)

        result = self._run(docker_cmd, check=False)
        if result.returncode != 0 and result.stderr:
            self.logger.debug(result.stderr.strip())
        return result.returncode

    def remove_container(self, container_id: str):
        """Force-remove a container; already-removed is not an error"""
        result = self._run(['docker', 'rm', '-f', container_id], check=False)
        if result.returncode != 0:
            self.logger.debug(f"docker rm -f {container_id} exited {result.returncode}")

    def teardown_infrastructure(self):
        self.logger.info("No active runners remain; bringing down compose services...")
        self._compose('down')
