"""
Worker Supervisor Module

Runs one worker inside its container: registers the runner, blocks on the
run loop and always deregisters on the way out.
"""

import logging
import signal
import subprocess
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from .broker import CredentialBroker, TokenKind
from .errors import NetworkError, RegistrationFailed, ShutdownRequested
from .runner import RunnerBinary


class SupervisorState(Enum):
    INIT = 'init'
    CONNECTIVITY_CHECK = 'connectivity_check'
    REGISTERING = 'registering'
    RUNNING = 'running'
    DEREGISTERING = 'deregistering'
    TERMINATED = 'terminated'


class WorkerSupervisor:
    """Lifecycle of one registered runner process"""

    HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, config, broker: Optional[CredentialBroker] = None,
                 binary: Optional[RunnerBinary] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize supervisor

        Args:
            config: FleetConfig instance
            broker: Token client (defaults to CredentialBroker)
            binary: Runner binary wrapper (defaults to RunnerBinary)
            logger: Logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.broker = broker or CredentialBroker(config, self.logger)
        self.binary = binary or RunnerBinary(config, self.logger)
        self.state = SupervisorState.INIT
        self.process: Optional[subprocess.Popen] = None
        self.deregistration_attempts = 0
        self._previous_handlers = {}

    def _transition(self, state: SupervisorState):
        self.logger.debug(f"Supervisor state: {self.state.value} -> {state.value}")
        self.state = state

    # Signal handling

    def _handle_signal(self, signum, frame):
        if self.state in (SupervisorState.DEREGISTERING, SupervisorState.TERMINATED):
            self.logger.warning(f"Received signal {signum} during cleanup, ignoring")
            return
        self.logger.info(f"Received signal {signum}, initiating shutdown...")
        raise ShutdownRequested(signum)

    def _install_signal_handlers(self):
        for signum in self.HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    # Lifecycle

    def run(self) -> int:
        """
        Drive the worker from INIT to TERMINATED

        Returns:
            Run loop exit code when it failed, 0 on natural exit or signal

        Raises:
            ConfigError: Required settings are missing
            NetworkError: The platform API is unreachable
            BrokerUnreachable: No registration token could be obtained
            RegistrationFailed: The runner configure step failed
        """
        self._install_signal_handlers()
        try:
            self.config.ensure_valid()

            self._transition(SupervisorState.CONNECTIVITY_CHECK)
            self.logger.debug("Checking connectivity to the platform API...")
            self.broker.check_connectivity()

            with self.registration():
                return self._run_loop()
        except ShutdownRequested as e:
            # a signal can land before the registration block is entered or
            # before its finally clause starts; release is idempotent
            if self.state in (SupervisorState.REGISTERING, SupervisorState.RUNNING,
                              SupervisorState.DEREGISTERING):
                self._release()
            self.logger.info(f"Runner {self.config.runner_name} stopped by signal {e.signum}")
            return 0
        finally:
            self._transition(SupervisorState.TERMINATED)
            self._restore_signal_handlers()

    @contextmanager
    def registration(self) -> Iterator[None]:
        """
        Register the runner and guarantee deregistration when the block exits

        Nothing is released if configuration itself fails: the runner was
        never registered.

        Raises:
            BrokerUnreachable: No registration token could be obtained
            RegistrationFailed: The configure step exited non-zero
        """
        self._transition(SupervisorState.REGISTERING)
        self._register()
        try:
            yield
        finally:
            self._release()

    def _release(self):
        self._transition(SupervisorState.DEREGISTERING)
        self._stop_process()
        self._deregister()

    def _register(self):
        self.logger.debug("Getting registration token...")
        token = self.broker.acquire(TokenKind.REGISTRATION)

        scope = self.config.scope
        self.logger.debug("Configuring runner (non-interactive)...")
        exit_code = self.binary.configure(
            url=scope.registration_url(self.config.web_url),
            token=token,
            name=self.config.runner_name,
            work_dir=self.config.work_dir,
            group=self.config.group,
            labels=self.config.labels,
            replace=True,
        )

        if exit_code != 0:
            self._dump_diagnostics()
            raise RegistrationFailed(
                f"config.sh exited with {exit_code} - see diagnostic above", exit_code
            )

        self.logger.info(f"Runner {self.config.runner_name} configured")

    def _dump_diagnostics(self):
        diagnostic = self.binary.latest_diagnostic()
        if diagnostic is None:
            self.logger.error("No runner diagnostic log found")
            return

        path, contents = diagnostic
        self.logger.error(f"----- {self.binary.DIAG_DIR}/{path.name} -----")
        for line in contents.splitlines():
            self.logger.error(f"    {line}")
        self.logger.error("----- end diag -----")

    def _run_loop(self) -> int:
        self._transition(SupervisorState.RUNNING)
        self.logger.info(f"Starting runner {self.config.runner_name}...")
        self.process = self.binary.run()
        exit_code = self.process.wait()

        if exit_code != 0:
            self.logger.error(f"Runner exited with {exit_code}")
            return exit_code

        self.logger.info("Runner exited")
        return 0

    def _stop_process(self):
        """Terminate run.sh if it is still alive"""
        if self.process is None or self.process.poll() is not None:
            return

        self.logger.info(f"Stopping runner process (PID: {self.process.pid})")
        try:
            self.process.terminate()
            self.process.wait(timeout=self.config.stop_timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning("Runner did not stop gracefully, killing...")
            self.process.kill()
            self.process.wait()

    def _deregister(self):
        """Best-effort removal; runs at most once per supervisor"""
        if self.deregistration_attempts:
            return
        self.deregistration_attempts += 1

        self.logger.debug("Cleaning up runner...")
        try:
            token = self.broker.acquire(TokenKind.REMOVAL)
        except NetworkError as e:
            self.logger.warning(f"Failed to get removal token: {e}")
            return

        try:
            exit_code = self.binary.remove(token)
        except OSError as e:
            self.logger.warning(f"Failed to remove runner automatically: {e}")
            return

        if exit_code != 0:
            self.logger.warning(f"Failed to remove runner automatically (exit {exit_code}).")
        else:
            self.logger.info(f"Runner {self.config.runner_name} deregistered")
