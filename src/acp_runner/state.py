"""Agent lifecycle phases and runtime state."""

from dataclasses import dataclass
from enum import Enum, auto

from .process import AgentProcess


class AgentPhase(Enum):
    """Lifecycle phases of a supervised agent."""

    IDLE = auto()  # Never scheduled
    SCHEDULED = auto()  # Attempt queued on a background thread
    CHECKING_UPDATES = auto()  # Running updater and MCP reconciliation
    STARTING = auto()  # Spawning the agent process
    RUNNING = auto()  # Agent process is live
    STOPPING = auto()  # Termination requested
    STOPPED = auto()  # Stopped on request, or cancelled before spawn
    FAILED = auto()  # Attempt failed or process exited unexpectedly


# An attempt is in flight between schedule() and the spawn
IN_FLIGHT_PHASES = frozenset(
    {AgentPhase.SCHEDULED, AgentPhase.CHECKING_UPDATES, AgentPhase.STARTING}
)

# Phases in which a process handle exists
PROCESS_PHASES = frozenset(
    {AgentPhase.STARTING, AgentPhase.RUNNING, AgentPhase.STOPPING}
)

# Phases from which schedule() may start a new attempt
SCHEDULABLE_PHASES = frozenset(
    {AgentPhase.IDLE, AgentPhase.STOPPED, AgentPhase.FAILED}
)


@dataclass(frozen=True)
class AgentStatus:
    """Structured status delivered with a failure."""

    message: str
    error: BaseException | None = None
    exit_code: int | None = None

    def __post_init__(self) -> None:
        if not self.message:
            raise ValueError("AgentStatus message must not be empty")


@dataclass
class AgentRuntimeState:
    """Mutable state of one agent, owned by its AgentService."""

    phase: AgentPhase = AgentPhase.IDLE
    process: AgentProcess | None = None
    last_failure: AgentStatus | None = None
    effective_startup_command: tuple[str, ...] = ()

    def check_invariant(self) -> bool:
        """True if a process handle exists exactly in the process phases."""
        return (self.process is not None) == (self.phase in PROCESS_PHASES)
