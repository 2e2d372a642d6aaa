"""Custom exceptions for the agent runner."""

from typing import Sequence


class RunnerError(Exception):
    """Base exception for runner errors."""

    pass


class ProcessLaunchError(RunnerError):
    """Raised when an executable cannot be located or spawned."""

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        program = self.command[0] if self.command else "<empty>"
        super().__init__(f"Could not launch '{program}': {reason}")


class UpdateCheckFailure(RunnerError):
    """Raised when an agent's self-update command fails."""

    def __init__(
        self,
        agent_id: str,
        exit_code: int | None,
        stderr_lines: Sequence[str] = (),
    ):
        self.agent_id = agent_id
        self.exit_code = exit_code
        self.stderr_lines = list(stderr_lines)
        detail = self.stderr_lines[-1] if self.stderr_lines else "no output"
        super().__init__(
            f"Update check for '{agent_id}' failed (exit code {exit_code}): {detail}"
        )


class ReconciliationWarning(RunnerError):
    """A registration could not be confirmed, or was reported as failing."""

    def __init__(self, message: str, line: str | None = None):
        self.line = line
        super().__init__(message)


class UnexpectedProcessExit(RunnerError):
    """Raised when a running agent process exits without being stopped."""

    def __init__(self, agent_id: str, exit_code: int | None):
        self.agent_id = agent_id
        self.exit_code = exit_code
        super().__init__(
            f"Agent '{agent_id}' exited unexpectedly with code {exit_code}"
        )


class AgentStateError(RunnerError):
    """Raised when a lifecycle request is not valid in the current phase."""

    pass


class AlreadySchedulingError(AgentStateError):
    """Raised when schedule() is called while an attempt is in flight."""

    pass


class AgentNotFoundError(RunnerError, KeyError):
    """Raised when no agent is registered under an id."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"No agent registered with id '{agent_id}'")

    def __str__(self) -> str:
        return self.args[0]
