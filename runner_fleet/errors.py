"""
Errors Module

Exception hierarchy shared by the supervisor, reconciler and teardown paths.
"""


class FleetError(Exception):
    """Base class for runner fleet errors"""

    exit_code = 1


class ConfigError(FleetError):
    """Missing or invalid required configuration"""


class ValidationError(FleetError):
    """Malformed operator input (desired count, container ids)"""


class NetworkError(FleetError):
    """Remote platform API cannot be reached"""


class BrokerUnreachable(NetworkError):
    """Token request failed at the transport level"""


class InvalidToken(BrokerUnreachable):
    """Token response was an error, empty or the literal 'null'"""


class RegistrationFailed(FleetError):
    """Runner configure step exited non-zero"""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code or 1


class RemovalFailed(FleetError):
    """Runner removal step failed (only ever logged)"""


class ContainerRuntimeError(FleetError):
    """Docker or Compose is unavailable or a runtime command failed"""


class ConcurrentOperation(FleetError):
    """Another fleet operation holds the operation lock"""


class ShutdownRequested(BaseException):
    """
    Raised from signal handlers to unwind into cleanup blocks.

    Derives from BaseException, like KeyboardInterrupt, so that generic
    ``except Exception`` handlers do not swallow it.
    """

    def __init__(self, signum: int):
        super().__init__(f"Received signal {signum}")
        self.signum = signum
