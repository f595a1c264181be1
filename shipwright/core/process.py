"""
External process execution for the release pipeline.

Commands are never allowed to raise on a non-zero exit: every call
returns a ProcessResult and the caller decides how severe a failure is.
Output is streamed line by line to per-stream handlers, which is how
build logs get classified while the compiler is still running.
"""

from __future__ import annotations

import errno
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Iterable, Optional, Sequence

from shipwright.core.errors import TransientIOError
from shipwright.core.utils import log

LineHandler = Callable[[str], None]


# =============================================================================
# Output Classification
# =============================================================================


class Severity(Enum):
    """How a line of process output should be reported."""

    LOG = "log"
    ERROR = "error"


# Compilers and ninja report failures on stdout
BUILD_ERROR_PATTERNS: tuple[str, ...] = (
    r"\b(?:FAILED|failed|ERROR)\b",
    r" error ",
)


class LineClassifier:
    """Maps a line of output to a Severity using a set of regex patterns."""

    def __init__(self, patterns: Iterable[str] = BUILD_ERROR_PATTERNS):
        self.patterns = [re.compile(p) for p in patterns]

    def classify(self, line: str) -> Severity:
        for pattern in self.patterns:
            if pattern.search(line):
                return Severity.ERROR
        return Severity.LOG


def classified_printer(classifier: LineClassifier) -> LineHandler:
    """Return a line handler printing each line at its classified severity."""

    def handle(line: str) -> None:
        if classifier.classify(line) is Severity.ERROR:
            log.line_error(line)
        else:
            log.line(line)

    return handle


def split_lines(text: str) -> list[str]:
    """Split text into non-empty lines, dropping CR/LF."""
    return re.findall(r"[^\r\n]+", text)


# =============================================================================
# Results and Policies
# =============================================================================


@dataclass
class ProcessResult:
    """Outcome of one external command."""

    failed: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-backoff retry for flaky external operations."""

    attempts: int = 3
    backoff_seconds: float = 5.0


# Launch failures worth another attempt: the binary is still being written, or
# the system is briefly out of process slots.
TRANSIENT_ERRNOS = frozenset({errno.ETXTBSY, errno.EAGAIN})


def command_exists(command: str) -> bool:
    """Check whether an executable is available on PATH."""
    return shutil.which(command) is not None


def ensure_command_exists(command: str) -> bool:
    """Log an error when a required tool is missing. Returns availability."""
    if not command_exists(command):
        log.error(f"Command '{command}' does not exist")
        return False
    return True


# =============================================================================
# Heartbeat
# =============================================================================


class Heartbeat:
    """Emits a periodic "Working..." line while a long operation is silent.

    Usage:
        with Heartbeat(10):
            runner.run("cmake", ["--build", "."])
    """

    def __init__(self, interval: float = 10.0, emit: Optional[LineHandler] = None):
        self.interval = interval
        self.emit = emit or log.line
        self.beats = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._cancelled = False
        self._start: Optional[float] = None

    def start(self) -> "Heartbeat":
        self._start = time.monotonic()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()
        return self

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            elapsed = int(time.monotonic() - (self._start or 0.0))
            self.beats += 1
            self.emit(f"Working... ({elapsed} seconds)")

    def cancel(self) -> None:
        """Stop the heartbeat. Later calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __enter__(self) -> "Heartbeat":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
        return None


# =============================================================================
# Process Runner
# =============================================================================


def _pump(stream: IO[str], handler: Optional[LineHandler], sink: list[str]) -> None:
    for chunk in iter(stream.readline, ""):
        sink.append(chunk)
        if handler is not None:
            for line in split_lines(chunk):
                handler(line)
    stream.close()


class ProcessRunner:
    """Runs external commands with streamed output and optional retry."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def run(
        self,
        command: str | Path,
        args: Sequence[str | Path] = (),
        cwd: Optional[Path] = None,
        on_stdout: Optional[LineHandler] = None,
        on_stderr: Optional[LineHandler] = None,
        retry: Optional[RetryPolicy] = None,
        before_attempt: Optional[Callable[[], None]] = None,
        input_text: Optional[str] = None,
    ) -> ProcessResult:
        """Run a command and return its result.

        With a retry policy a failing command is re-run after a fixed
        backoff until the attempt ceiling; the last failure is returned.
        before_attempt runs ahead of every attempt so steps with side
        effects can reset their outputs first. Transient launch failures
        (TRANSIENT_ERRNOS) are retried even without a policy.
        """
        cmd = [str(command), *(str(a) for a in args)]

        if self.dry_run:
            log.info(f"[DRY-RUN] Would run: {' '.join(cmd)}" + (f" in {cwd}" if cwd else ""))
            return ProcessResult(failed=False, returncode=0)

        # Transient launch errors are always retried, with the default policy if none was given
        policy = retry or RetryPolicy()
        attempts = max(1, policy.attempts)
        result = ProcessResult(failed=True, returncode=-1)
        for attempt in range(1, attempts + 1):
            if before_attempt is not None:
                before_attempt()
            transient = False
            try:
                result = self._run_once(cmd, cwd, on_stdout, on_stderr, input_text)
            except TransientIOError as e:
                transient = True
                result = ProcessResult(failed=True, returncode=-1, stderr=str(e))
            if not result.failed:
                return result
            if (retry is None and not transient) or attempt == attempts:
                break
            log.warning(
                f"{Path(cmd[0]).name} failed (attempt {attempt}/{attempts}), "
                f"retrying in {policy.backoff_seconds}s"
            )
            time.sleep(policy.backoff_seconds)

        if transient and on_stderr is not None:
            on_stderr(result.stderr)
        return result

    def _run_once(
        self,
        cmd: list[str],
        cwd: Optional[Path],
        on_stdout: Optional[LineHandler],
        on_stderr: Optional[LineHandler],
        input_text: Optional[str],
    ) -> ProcessResult:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            message = f"Failed to launch {cmd[0]}: {e}"
            if e.errno in TRANSIENT_ERRNOS:
                raise TransientIOError(message) from e
            if on_stderr is not None:
                on_stderr(message)
            return ProcessResult(failed=True, returncode=-1, stderr=message)

        out: list[str] = []
        err: list[str] = []
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, on_stdout, out), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, on_stderr, err), daemon=True),
        ]
        for reader in readers:
            reader.start()

        if input_text is not None and proc.stdin is not None:
            try:
                proc.stdin.write(input_text)
            except BrokenPipeError:
                log.dim(f"{Path(cmd[0]).name} closed its input early")
            finally:
                proc.stdin.close()

        returncode = proc.wait()
        for reader in readers:
            reader.join()

        return ProcessResult(
            failed=returncode != 0,
            returncode=returncode,
            stdout="".join(out),
            stderr="".join(err),
        )

    def run_simple(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Path] = None,
        on_stderr: Optional[LineHandler] = None,
    ) -> str:
        """Return trimmed stdout, or an empty string if the command failed."""
        result = self.run(command, args, cwd=cwd, on_stderr=on_stderr)
        if result.failed:
            return ""
        return result.stdout.strip()
