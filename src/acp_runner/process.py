"""External command execution and agent process handles."""

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Mapping, Sequence

import structlog

from .exceptions import ProcessLaunchError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external command invocation."""

    exit_code: int
    stdout_lines: tuple[str, ...] = ()
    stderr_lines: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        """True if the command exited with code 0."""
        return self.exit_code == 0


@dataclass
class AgentProcess:
    """Handle to a live, long-running agent subprocess."""

    command: list[str]
    popen: subprocess.Popen = field(repr=False)
    log_file: IO | None = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        """Process ID."""
        return self.popen.pid

    @property
    def exit_code(self) -> int | None:
        """Exit code if the process has terminated."""
        return self.popen.returncode

    @property
    def stdin(self) -> IO[bytes] | None:
        """Pipe to the agent's standard input (ACP requests)."""
        return self.popen.stdin

    @property
    def stdout(self) -> IO[bytes] | None:
        """Pipe from the agent's standard output (ACP responses)."""
        return self.popen.stdout

    def poll(self) -> int | None:
        """Return the exit code if the process has exited, else None."""
        return self.popen.poll()

    def is_alive(self) -> bool:
        """True while the process has not exited."""
        return self.popen.poll() is None

    def wait(self, timeout: float | None = None) -> int:
        """Block until the process exits.

        Raises:
            subprocess.TimeoutExpired: If the timeout elapses first.
        """
        exit_code = self.popen.wait(timeout=timeout)
        self._close_stdin()
        self._close_files()
        return exit_code

    def stop(self, timeout: float = 5.0) -> int | None:
        """Stop the process gracefully, then forcefully if needed.

        Args:
            timeout: Seconds to wait for graceful shutdown before SIGKILL.

        Returns:
            The process exit code.
        """
        if self.popen.poll() is not None:
            self._close_stdin()
            self._close_files()
            return self.popen.returncode

        logger.info("stopping_process", pid=self.pid)

        # ACP agents also shut down on stdin EOF
        self._close_stdin()

        self.popen.terminate()

        try:
            self.popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("force_killing_process", pid=self.pid)
            self.popen.kill()
            self.popen.wait(timeout=2.0)

        self._close_files()
        return self.popen.returncode

    def _close_stdin(self) -> None:
        if self.popen.stdin is not None:
            try:
                self.popen.stdin.close()
            except OSError:
                logger.debug("stdin_close_failed", pid=self.pid)

    def _close_files(self) -> None:
        """Close the stdout pipe and the log file once the process is gone."""
        if self.popen.stdout is not None:
            self.popen.stdout.close()
        if self.log_file:
            self.log_file.close()
            self.log_file = None


class ProcessRunner:
    """Runs external commands in a fixed working directory and environment."""

    def __init__(
        self,
        working_dir: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ):
        """
        Args:
            working_dir: Directory the child processes run in.
            env: Variables layered over the parent environment.
        """
        self.working_dir = Path(working_dir) if working_dir else None
        self.env = dict(env or {})

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env

    def run(
        self,
        command: Sequence[str],
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run a command to completion and capture its output.

        A non-zero exit code is returned as a normal result.

        Args:
            command: Argument vector.
            timeout: Seconds to wait before killing the command.

        Returns:
            ProcessResult with exit code and output lines.

        Raises:
            ProcessLaunchError: If the executable cannot be launched.
        """
        cmd = list(command)
        logger.debug("running_command", command=cmd, working_dir=str(self.working_dir))

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                stdin=subprocess.DEVNULL,
                env=self._environment(),
                cwd=self.working_dir,
                timeout=timeout,
            )
        except OSError as e:
            raise ProcessLaunchError(cmd, str(e)) from e

        result = ProcessResult(
            exit_code=completed.returncode,
            stdout_lines=tuple(completed.stdout.splitlines()),
            stderr_lines=tuple(completed.stderr.splitlines()),
        )

        logger.debug(
            "command_finished",
            command=cmd,
            exit_code=result.exit_code,
            stdout_lines=len(result.stdout_lines),
            stderr_lines=len(result.stderr_lines),
        )
        return result

    def spawn(
        self,
        command: Sequence[str],
        log_path: Path | None = None,
    ) -> AgentProcess:
        """Start a long-running process without waiting for it.

        Standard input and output are pipes for the agent protocol; standard
        error goes to log_path when given.

        Raises:
            ProcessLaunchError: If the executable cannot be launched.
        """
        cmd = list(command)

        log_file: IO | None = None
        if log_path:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = open(log_path, "a")

        try:
            popen = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=log_file,
                env=self._environment(),
                cwd=self.working_dir,
            )
        except OSError as e:
            if log_file:
                log_file.close()
            raise ProcessLaunchError(cmd, str(e)) from e

        logger.info("process_spawned", command=cmd, pid=popen.pid)
        return AgentProcess(command=cmd, popen=popen, log_file=log_file)
