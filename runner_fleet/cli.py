#!/usr/bin/env python3
"""
CLI Module

Command-line entry points for fleet management and the in-container
supervisor.
"""

import argparse
import dataclasses
import getpass
import logging
import sys
from typing import Callable, List, Optional

from .broker import CredentialBroker
from .config import FleetConfig
from .errors import ConfigError, FleetError, ValidationError
from .log import setup_logger
from .reconciler import FleetReconciler, parse_desired_count
from .runner import RunnerBinary
from .runtime import DockerRuntime
from .supervisor import WorkerSupervisor
from .teardown import ALL, FleetTeardown


class UsageParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on usage errors"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _load_config() -> Optional[FleetConfig]:
    try:
        return FleetConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None


def _report_config_errors(errors: List[str]):
    print("Configuration errors:", file=sys.stderr)
    for error in errors:
        print(f"  - {error}", file=sys.stderr)


def _guarded(logger: logging.Logger, action: Callable[[], int]) -> int:
    """Run action, mapping fleet errors to exit codes"""
    try:
        return action()
    except FleetError as e:
        logger.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def prompt_for_missing(config: FleetConfig, logger: logging.Logger,
                       input_fn: Callable[[str], str] = input,
                       secret_fn: Callable[[str], str] = getpass.getpass) -> FleetConfig:
    """
    Ask for required fleet settings that are not configured

    Args:
        config: Current configuration
        logger: Logger instance
        input_fn: Reads a visible answer
        secret_fn: Reads a hidden answer (access token)

    Returns:
        New FleetConfig with the answers applied

    Raises:
        ConfigError: If an answer is empty
    """
    prompts = [
        ('repository', 'REPO', "Enter your GitHub repository (e.g. owner/repo): ", False),
        ('access_token', 'ACCESS_TOKEN', "Enter your GitHub Personal Access Token: ", True),
        ('service_name', 'SERVICE_NAME', "Enter the SERVICE_NAME (e.g. recoup-runner): ", False),
        ('environment', 'ENVIRONMENT', "Enter the ENVIRONMENT name (e.g. dev, prod): ", False),
    ]

    changes = {}
    for attr, key, message, secret in prompts:
        if attr == 'repository' and config.organization:
            logger.info(f"ORG already set (value: {config.organization})")
            continue

        current = getattr(config, attr)
        if current:
            shown = '***' if secret else current
            logger.info(f"{key} already set (value: {shown})")
            continue

        answer = (secret_fn if secret else input_fn)(message).strip()
        if not answer:
            raise ConfigError(f"Value for {key} cannot be empty.")
        changes[attr] = answer
        logger.info(f"{key} set" if secret else f"{key} set to '{answer}'")

    return dataclasses.replace(config, **changes) if changes else config


def interactive_menu(reconciler: FleetReconciler, teardown: FleetTeardown,
                     runtime: DockerRuntime, input_fn: Callable[[str], str] = input) -> int:
    """
    Let the operator start runners or pick runners to tear down

    Returns:
        Process exit code

    Raises:
        ValidationError: On an unknown action or malformed selection
    """
    print("Actions:\n  1) Start runners\n  2) Tear down runners")
    action = input_fn("Action> ").strip()

    if action in ('1', 'Start runners'):
        count = input_fn("Enter number of runners to start: ").strip()
        reconciler.reconcile(count)
        return 0

    if action in ('2', 'Tear down runners'):
        workers = runtime.list_workers()
        print("  0) ALL")
        for index, handle in enumerate(workers, start=1):
            print(f"  {index}) {handle}")
        selection = input_fn("Select runners (numbers separated by spaces, 0 for ALL)> ").split()

        if '0' in selection or 'ALL' in selection:
            teardown.teardown(ALL)
            return 0

        chosen = []
        for item in selection:
            if not item.isdigit() or not 1 <= int(item) <= len(workers):
                raise ValidationError(f"Invalid selection: {item}")
            chosen.append(workers[int(item) - 1])
        teardown.teardown(chosen)
        return 0

    raise ValidationError("No action selected.")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for runner-fleet"""
    parser = UsageParser(
        prog='runner-fleet',
        description='Start or tear down self-hosted runner containers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Interactive menu (start N / tear down selected or ALL)
  runner-fleet

  # Make sure 4 runners are running (only ever adds)
  runner-fleet 4
        """
    )
    parser.add_argument('count', nargs='?', help='Desired total number of runners')
    args = parser.parse_args(argv)

    if args.count is not None:
        try:
            desired = parse_desired_count(args.count)
        except ValidationError as e:
            print(f"[error] {e}", file=sys.stderr)
            parser.print_usage(sys.stderr)
            return 1

    config = _load_config()
    if config is None:
        return 1
    logger = setup_logger(config)

    if sys.stdin.isatty():
        try:
            config = prompt_for_missing(config, logger)
        except ConfigError as e:
            logger.error(str(e))
            return 1

    errors = config.validate(fleet=True)
    if errors:
        _report_config_errors(errors)
        return 1

    runtime = DockerRuntime(config, logger)
    reconciler = FleetReconciler(config, runtime, logger)

    def run() -> int:
        runtime.check_available()
        if args.count is not None:
            reconciler.reconcile(desired)
            return 0
        broker = CredentialBroker(config, logger)
        teardown = FleetTeardown(config, runtime, broker, RunnerBinary(config, logger), logger)
        return interactive_menu(reconciler, teardown, runtime)

    return _guarded(logger, run)


def teardown_main(argv: Optional[List[str]] = None) -> int:
    """Entry point for runner-fleet-teardown"""
    parser = UsageParser(
        prog='runner-fleet-teardown',
        description='Deregister and remove runner containers (all when no ids are given)',
    )
    parser.add_argument('container_ids', nargs='*', help='Container ids to remove')
    args = parser.parse_args(argv)

    config = _load_config()
    if config is None:
        return 1
    logger = setup_logger(config)

    errors = config.validate(fleet=True)
    if errors:
        _report_config_errors(errors)
        return 1

    runtime = DockerRuntime(config, logger)
    teardown = FleetTeardown(config, runtime, CredentialBroker(config, logger),
                             RunnerBinary(config, logger), logger)

    def run() -> int:
        runtime.check_available()
        result = teardown.teardown(args.container_ids or ALL)
        logger.info(f"Teardown complete ({len(result.removed)} removed, "
                    f"{len(result.removal_failures)} deregistration failure(s)).")
        return 0

    return _guarded(logger, run)


def supervise_main(argv: Optional[List[str]] = None) -> int:
    """Entry point for runner-supervisor (container entrypoint)"""
    parser = UsageParser(
        prog='runner-supervisor',
        description='Register, run and deregister one runner',
    )
    parser.parse_args(argv)

    config = _load_config()
    if config is None:
        return 1
    logger = setup_logger(config)

    supervisor = WorkerSupervisor(config, logger=logger)
    return _guarded(logger, supervisor.run)


if __name__ == '__main__':
    sys.exit(main())
