"""External process execution with timeout and cancellation.

Usage:
    runner = ProcessRunner()
    result = runner.run(ProcessRunRequest("dotnet", ["build"], timeout=600), token)
    if result.timed_out: ...

A timeout is a result, not an exception: the child's whole process group is
killed and ``timed_out`` is set. Cancellation kills the child the same way.
"""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from metrics_reporter.cancellation import NEVER, CancellationToken
from metrics_reporter.errors import ReportIoError

logger = logging.getLogger(__name__)

# How often a waiting run checks for cancellation, in seconds
POLL_INTERVAL = 0.2


@dataclass
class ProcessRunRequest:
    file_name: str
    arguments: list[str] = field(default_factory=list)
    working_directory: str | None = None
    timeout: float | None = None
    environment: dict[str, str] | None = None


@dataclass
class ProcessRunResult:
    exit_code: int
    timed_out: bool
    started_at: datetime
    finished_at: datetime
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def _kill_tree(proc: subprocess.Popen) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        # already gone
        return
    except PermissionError:
        proc.kill()


class ProcessRunner:
    def run(self, request: ProcessRunRequest, token: CancellationToken = NEVER) -> ProcessRunResult:
        """Run *request* to completion, timeout or cancellation.

        Raises:
            ReportIoError: if the process cannot be started.
        """
        env = {**os.environ, **request.environment} if request.environment else None
        command = [request.file_name, *request.arguments]
        logger.info("Running %s", " ".join(command))

        started_at = datetime.now(timezone.utc)
        try:
            proc = subprocess.Popen(
                command,
                cwd=request.working_directory,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise ReportIoError(f"Failed to start '{request.file_name}': {exc}") from exc

        deadline = time.monotonic() + request.timeout if request.timeout else None
        timed_out = killed = False
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                elif not token.cancelled:
                    continue
                logger.warning("%s '%s'; killing process tree",
                               "Timed out running" if timed_out else "Cancelled",
                               request.file_name)
                _kill_tree(proc)
                killed = True
                stdout, stderr = proc.communicate()
                break

        result = ProcessRunResult(
            exit_code=-1 if killed else proc.returncode,
            timed_out=timed_out,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            stdout=stdout or "",
            stderr=stderr or "",
        )
        logger.debug("'%s' exited with %d", request.file_name, result.exit_code)
        return result
