"""Tests for the worker supervisor lifecycle."""

import dataclasses
import os
import signal
import time
from pathlib import Path

import pytest

from runner_fleet.broker import TokenKind
from runner_fleet.errors import ConfigError, InvalidToken, NetworkError, RegistrationFailed
from runner_fleet.supervisor import SupervisorState, WorkerSupervisor


@pytest.fixture
def supervisor(config, broker, binary, logger):
    return WorkerSupervisor(config, broker=broker, binary=binary, logger=logger)


def _deliver(signum):
    """Build a wait() behaviour that signals the current process"""
    def behaviour():
        os.kill(os.getpid(), signum)
        # give the interpreter a chance to run the Python-level handler
        time.sleep(1)
        return 0
    return behaviour


class TestNaturalExit:
    """Run loop ending on its own."""

    def test_registers_runs_and_deregisters_once(self, supervisor, broker, binary, config) -> None:
        assert supervisor.run() == 0

        assert broker.connectivity_checks == 1
        assert broker.acquired == [TokenKind.REGISTRATION, TokenKind.REMOVAL]
        assert binary.remove_calls == ['removal-token-2']
        assert supervisor.deregistration_attempts == 1
        assert supervisor.state == SupervisorState.TERMINATED

        call = binary.configure_calls[0]
        assert call['url'] == 'https://github.com/owner/repo'
        assert call['token'] == 'registration-token-1'
        assert call['name'] == config.runner_name
        assert call['labels'] == config.labels
        assert call['replace'] is True

    def test_failing_run_loop_propagates_exit_code(self, supervisor, binary, make_process) -> None:
        binary.process = make_process(3)

        assert supervisor.run() == 3
        assert binary.remove_calls == ['removal-token-2']

    def test_removal_token_failure_only_warns(self, supervisor, broker, binary, caplog) -> None:
        broker.fail_kinds.add(TokenKind.REMOVAL)

        assert supervisor.run() == 0

        assert binary.remove_calls == []
        assert "Failed to get removal token" in caplog.text

    def test_removal_failure_only_warns(self, supervisor, binary, caplog) -> None:
        binary.remove_exit_code = 1

        assert supervisor.run() == 0
        assert "Failed to remove runner automatically" in caplog.text


class TestSignals:
    """Interrupts while the runner is active."""

    @pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
    def test_signal_stops_process_and_deregisters_once(self, supervisor, broker, binary,
                                                       make_process, signum) -> None:
        binary.process = make_process(_deliver(signum))

        assert supervisor.run() == 0

        assert binary.process.terminated
        assert binary.remove_calls == ['removal-token-2']
        assert broker.acquired.count(TokenKind.REMOVAL) == 1
        assert supervisor.deregistration_attempts == 1

    def test_handlers_restored_after_run(self, supervisor) -> None:
        before = signal.getsignal(signal.SIGTERM)
        supervisor.run()
        assert signal.getsignal(signal.SIGTERM) is before

    def test_signal_during_cleanup_is_ignored(self, supervisor) -> None:
        supervisor.state = SupervisorState.DEREGISTERING
        supervisor._handle_signal(signal.SIGTERM, None)
        assert supervisor.state == SupervisorState.DEREGISTERING


class TestStartupFailures:
    """Failures before the runner is registered."""

    def test_missing_token_is_config_error(self, config, broker, binary, logger) -> None:
        config = dataclasses.replace(config, access_token='')
        supervisor = WorkerSupervisor(config, broker=broker, binary=binary, logger=logger)

        with pytest.raises(ConfigError):
            supervisor.run()

        assert broker.connectivity_checks == 0
        assert broker.acquired == []

    def test_unreachable_platform_never_registers(self, supervisor, broker, binary) -> None:
        broker.reachable = False

        with pytest.raises(NetworkError):
            supervisor.run()

        assert binary.configure_calls == []
        assert broker.acquired == []
        assert supervisor.state == SupervisorState.TERMINATED

    def test_registration_token_failure(self, supervisor, broker, binary) -> None:
        broker.fail_kinds.add(TokenKind.REGISTRATION)

        with pytest.raises(InvalidToken):
            supervisor.run()

        assert binary.configure_calls == []
        assert binary.remove_calls == []

    def test_configure_failure_dumps_diagnostics(self, supervisor, broker, binary, caplog) -> None:
        binary.configure_exit_code = 2
        binary.diagnostic = (Path('/runner/_diag/Runner_1.log'), "line one\nline two")

        with pytest.raises(RegistrationFailed) as excinfo:
            supervisor.run()

        assert excinfo.value.exit_code == 2
        assert "----- _diag/Runner_1.log -----" in caplog.text
        assert "    line two" in caplog.text
        assert "----- end diag -----" in caplog.text
        assert binary.remove_calls == []
        assert TokenKind.REMOVAL not in broker.acquired

    def test_configure_failure_without_diagnostics(self, supervisor, binary, caplog) -> None:
        binary.configure_exit_code = 1

        with pytest.raises(RegistrationFailed):
            supervisor.run()

        assert "No runner diagnostic log found" in caplog.text


class TestCrash:
    """Unexpected errors after the runner started."""

    def test_crash_still_deregisters(self, supervisor, binary, make_process) -> None:
        def boom():
            raise RuntimeError("wait failed")

        binary.process = make_process(boom)

        with pytest.raises(RuntimeError):
            supervisor.run()

        assert binary.process.terminated
        assert binary.remove_calls == ['removal-token-2']
        assert supervisor.state == SupervisorState.TERMINATED
