"""Exit codes and the exception hierarchy shared by every command.

Each exception carries the process exit code it maps to, so the CLI can turn
any ``MetricsReporterError`` into ``sys.exit(exc.exit_code)`` without knowing
which stage raised it.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    PARSING_ERROR = 1
    IO_ERROR = 2
    VALIDATION_ERROR = 3


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MetricsReporterError(Exception):
    """Base exception for all metrics-reporter failures."""

    exit_code: ExitCode = ExitCode.VALIDATION_ERROR


class ParsingError(MetricsReporterError):
    """Raised when an input file is malformed or cannot be read."""

    exit_code = ExitCode.PARSING_ERROR


class ReportIoError(MetricsReporterError):
    """Raised when a report or baseline cannot be read or written."""

    exit_code = ExitCode.IO_ERROR


class ValidationError(MetricsReporterError):
    """Raised on invalid options, unknown metrics or conflicting inputs."""

    exit_code = ExitCode.VALIDATION_ERROR


class DuplicateCoverageError(ValidationError):
    """Raised when two coverage files report the same symbol."""


class OperationCancelledError(MetricsReporterError):
    """Raised when the run was cancelled between two pipeline stages."""

    exit_code = ExitCode.IO_ERROR
