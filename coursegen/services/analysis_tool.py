"""The external analysis tool, seen as a capability: run one stage, report how it ended.

The pipeline only depends on the ``AnalysisTool`` protocol. The default
implementation launches a command-line executable once per stage; tests plug
in an in-process fake.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)

# Characters of the stage log kept for error messages.
LOG_TAIL_CHARS = 1000

# Seconds a terminated process gets to exit before it is killed.
TERMINATE_GRACE_SECONDS = 5.0


@dataclass
class StageRequest:
    """Input for one stage invocation."""
    stage: str
    repo_path: Path
    working_dir: Path
    prompt: str
    timeout: float
    abort_event: Optional[threading.Event] = None


@dataclass
class StageRun:
    """How one invocation ended. ``returncode`` is None when the process never exited on its own."""
    returncode: Optional[int]
    duration: float
    timed_out: bool = False
    aborted: bool = False
    log_tail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.aborted


class AnalysisTool(Protocol):
    def run(self, request: StageRequest) -> StageRun:
        ...


def _tail(path: Path, chars: int = LOG_TAIL_CHARS) -> str:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return text[-chars:].strip()


def _terminate(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


class SubprocessAnalysisTool:
    """Runs ``<command> --stage S --working-dir D --prompt P`` inside the repository checkout.

    Output goes to ``<working_dir>/logs/<stage>.log``. The process is polled
    so it can be terminated when the stage times out or the caller's abort
    event fires (lease lost, job canceled).
    """

    def __init__(self, command: List[str], poll_interval: float = 1.0):
        if not command:
            raise ValueError("analysis tool command is empty")
        self.command = list(command)
        self.poll_interval = poll_interval

    def build_args(self, request: StageRequest) -> List[str]:
        return [
            *self.command,
            "--stage", request.stage,
            "--working-dir", str(request.working_dir),
            "--prompt", request.prompt,
        ]

    def run(self, request: StageRequest) -> StageRun:
        log_dir = Path(request.working_dir) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{request.stage}.log"

        start = time.monotonic()
        deadline = start + request.timeout
        timed_out = aborted = False

        with open(log_path, "a", encoding="utf-8") as log:
            proc = subprocess.Popen(
                self.build_args(request),
                cwd=str(request.repo_path),
                stdout=log,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
            logger.debug("Started stage %s (pid %d)", request.stage, proc.pid)

            while True:
                remaining = deadline - time.monotonic()
                try:
                    proc.wait(timeout=max(0.0, min(self.poll_interval, remaining)))
                    break
                except subprocess.TimeoutExpired:
                    pass
                if request.abort_event is not None and request.abort_event.is_set():
                    logger.warning("Aborting stage %s (pid %d)", request.stage, proc.pid)
                    _terminate(proc)
                    aborted = True
                    break
                if time.monotonic() >= deadline:
                    logger.warning("Stage %s exceeded %.0fs, terminating", request.stage, request.timeout)
                    _terminate(proc)
                    timed_out = True
                    break

        return StageRun(
            returncode=None if (timed_out or aborted) else proc.returncode,
            duration=time.monotonic() - start,
            timed_out=timed_out,
            aborted=aborted,
            log_tail=_tail(log_path),
        )
