from __future__ import annotations

from dataclasses import dataclass
import logging
import subprocess
import sys

import psutil

from smartctl_tap.logging_utils import TRACE_LEVEL

# Grace period for collecting output from a process tree that was just killed.
KILL_GRACE_S = 2.0


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external tool invocation.

    ``exit_code`` is ``None`` when the process never started or was killed
    after running past its timeout; ``error`` then explains why.
    """

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None

    @property
    def started(self) -> bool:
        return self.exit_code is not None or self.timed_out

    @property
    def completed(self) -> bool:
        return self.exit_code is not None

    def describe(self) -> str:
        if self.error:
            return self.error
        return (self.stderr or self.stdout).strip()


class ToolInvoker:
    def __init__(self, executable: str) -> None:
        self.executable = executable
        self.logger = logging.getLogger(self.__class__.__name__)

    def run(self, args: list[str], timeout: float) -> ToolResult:
        command = [self.executable, *args]
        self.logger.debug("Running %s (timeout %ss)", " ".join(command), timeout)
        kwargs: dict[str, object] = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                **kwargs,
            )
        except OSError as exc:
            self.logger.debug("Command could not be started: %s (%s)", command[0], exc)
            return ToolResult(exit_code=None, error=f"failed to start {command[0]}: {exc}")

        with process:
            try:
                stdout, stderr = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.logger.debug("Command timed out after %ss: %s", timeout, " ".join(command))
                stdout, stderr = self._terminate(process)
                return ToolResult(
                    exit_code=None,
                    stdout=stdout,
                    stderr=stderr,
                    timed_out=True,
                    error=f"{command[0]} timed out after {timeout:g}s",
                )

        if process.returncode != 0:
            self.logger.debug("Command failed (%s): %s", process.returncode, " ".join(command))
        if stderr:
            self.logger.log(TRACE_LEVEL, "stderr: %s", stderr.strip())
        if stdout:
            self.logger.log(TRACE_LEVEL, "stdout: %s", stdout.strip())
        return ToolResult(exit_code=process.returncode, stdout=stdout, stderr=stderr)

    def _terminate(self, process: subprocess.Popen[str]) -> tuple[str, str]:
        kill_process_tree(process.pid)
        try:
            stdout, stderr = process.communicate(timeout=KILL_GRACE_S)
        except subprocess.TimeoutExpired:
            # A grandchild escaped the kill and still holds the pipes open.
            process.kill()
            return "", ""
        return stdout or "", stderr or ""


def kill_process_tree(pid: int) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        children = parent.children(recursive=True)
    except psutil.Error:
        children = []
    procs = [*children, parent]
    for proc in procs:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    psutil.wait_procs(procs, timeout=KILL_GRACE_S)
