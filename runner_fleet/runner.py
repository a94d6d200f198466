"""
Runner Binary Module

Thin wrapper around the vendor runner scripts (config.sh, run.sh) installed
in the worker image.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple


class RunnerBinary:
    """Invoke the runner's configure, run and remove steps"""

    DIAG_DIR = '_diag'

    def __init__(self, config, logger: Optional[logging.Logger] = None):
        """
        Initialize runner binary wrapper

        Args:
            config: FleetConfig instance
            logger: Logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.home = Path(config.runner_home)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env['VSS_AGENT_CONNECT_TIMEOUT'] = str(self.config.connect_timeout)
        env['VSS_AGENT_DOWNLOAD_TIMEOUT'] = str(self.config.connect_timeout)
        return env

    def configure(self, url: str, token: str, name: str, work_dir: str,
                  group: str, labels: Sequence[str], replace: bool = True) -> int:
        """
        Register the runner (one-shot)

        Args:
            url: Repository or organization URL
            token: Registration token
            name: Runner name
            work_dir: Work directory relative to the runner home
            group: Runner group
            labels: Runner labels
            replace: Replace an existing runner with the same name

        Returns:
            Exit code of config.sh
        """
        cmd = [
            './config.sh', '--unattended',
            '--url', url,
            '--token', token,
            '--name', name,
            '--work', work_dir,
            '--runnergroup', group,
            '--labels', ','.join(labels),
        ]
        if replace:
            cmd.append('--replace')

        self.logger.debug(f"Running: {' '.join(cmd[:3])} --token *** --name {name} ...")  # Don't log token

        result = subprocess.run(cmd, cwd=self.home, env=self._env(), capture_output=True, text=True)
        if result.stdout:
            self.logger.debug(result.stdout.rstrip())
        if result.returncode != 0 and result.stderr:
            self.logger.error(result.stderr.rstrip())
        return result.returncode

    def run(self) -> subprocess.Popen:
        """
        Start the long-lived run loop

        Output is inherited so the runner logs straight to the container log.

        Returns:
            Popen handle of run.sh
        """
        return subprocess.Popen(['./run.sh'], cwd=self.home, env=self._env())

    def remove_command(self, token: str) -> List[str]:
        """Command line that deregisters the runner configured in the home directory"""
        return ['./config.sh', 'remove', '--unattended', '--token', token]

    def remove(self, token: str) -> int:
        """
        Deregister the runner (one-shot)

        Args:
            token: Removal token

        Returns:
            Exit code of config.sh remove
        """
        result = subprocess.run(self.remove_command(token), cwd=self.home,
                                env=self._env(), capture_output=True, text=True)
        if result.returncode != 0 and result.stderr:
            self.logger.warning(result.stderr.rstrip())
        return result.returncode

    def latest_diagnostic(self) -> Optional[Tuple[Path, str]]:
        """
        Newest diagnostic log written by the runner

        Returns:
            (path, contents) of the most recently modified file, or None
        """
        diag_dir = self.home / self.DIAG_DIR
        if not diag_dir.is_dir():
            return None

        files = [p for p in diag_dir.iterdir() if p.is_file()]
        if not files:
            return None

        latest = max(files, key=lambda p: p.stat().st_mtime)
        return latest, latest.read_text(errors='replace')
