"""Lifecycle supervision of a single agent kind."""

import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Sequence

import structlog

from .config import Config
from .descriptor import AgentDescriptor
from .exceptions import (
    AgentStateError,
    AlreadySchedulingError,
    ProcessLaunchError,
    UnexpectedProcessExit,
    UpdateCheckFailure,
)
from .notify import LifecycleNotifier
from .process import AgentProcess, ProcessRunner
from .reconcile import ReconcileResult, RegistrationReconciler, RegistrationTarget
from .state import (
    IN_FLIGHT_PHASES,
    SCHEDULABLE_PHASES,
    AgentPhase,
    AgentRuntimeState,
    AgentStatus,
)

logger = structlog.get_logger()

VERSION_NOT_FOUND = "Not found"
VERSION_TIMEOUT_SECONDS = 30.0

# Asks the user whether to enable the MCP server; True means yes
McpPrompt = Callable[[], bool]
# Runs a task on whichever thread owns user-facing surfaces
Dispatcher = Callable[[Callable[[], None]], None]


def dispatch_in_thread(task: Callable[[], None]) -> None:
    """Run task on a short-lived daemon thread."""
    threading.Thread(target=task, name="acp-runner-dispatch", daemon=True).start()


class AgentService:
    """Starts, stops and monitors one agent kind's process.

    Each schedule() runs on its own background thread: update check and MCP
    reconciliation, then the spawn. Process exit is observed by a watcher
    thread. All runtime state is guarded by a per-instance lock.
    """

    def __init__(
        self,
        descriptor: AgentDescriptor,
        config: Config,
        notifier: LifecycleNotifier | None = None,
        runner: ProcessRunner | None = None,
        prompt: McpPrompt | None = None,
        dispatch: Dispatcher = dispatch_in_thread,
    ):
        """
        Args:
            descriptor: The agent kind this service supervises.
            config: Runner configuration, read at schedule time.
            notifier: Receives lifecycle transitions.
            runner: Command runner; built from config when omitted.
            prompt: Asks whether to enable the MCP server.
            dispatch: Runs the prompt without blocking the lifecycle.
        """
        self.descriptor = descriptor
        self.config = config
        self.notifier = notifier or LifecycleNotifier()
        self._runner = runner
        self._prompt = prompt
        self._dispatch = dispatch

        self._state = AgentRuntimeState()
        self._lock = threading.RLock()
        # Held across a spawn and its RUNNING notification, and by stop()
        self._transition = threading.RLock()
        self._worker: threading.Thread | None = None
        self._cancel_requested = False

    def __repr__(self) -> str:
        return f"AgentService(id={self.id!r}, phase={self.phase.name})"

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def display_name(self) -> str:
        return self.descriptor.display_name

    @property
    def folder_name(self) -> str:
        return self.descriptor.folder_name

    @property
    def runner(self) -> ProcessRunner:
        """Runner for this agent's commands, in the configured working dir."""
        if self._runner is not None:
            return self._runner
        return ProcessRunner(
            working_dir=self.config.runner.working_dir,
            env=self.config.get_agent_config(self.id).env,
        )

    # -- State queries -----------------------------------------------------

    @property
    def phase(self) -> AgentPhase:
        with self._lock:
            return self._state.phase

    @property
    def process(self) -> AgentProcess | None:
        with self._lock:
            return self._state.process

    @property
    def last_failure(self) -> AgentStatus | None:
        with self._lock:
            return self._state.last_failure

    def state(self) -> AgentRuntimeState:
        """Snapshot of the runtime state."""
        with self._lock:
            return replace(self._state)

    def is_running(self) -> bool:
        return self.phase == AgentPhase.RUNNING

    def is_scheduled(self) -> bool:
        """True while an attempt is between schedule() and the spawn."""
        return self.phase in IN_FLIGHT_PHASES

    # -- Commands ------------------------------------------------------------

    def default_startup_command(self) -> tuple[str, ...]:
        return self.descriptor.default_startup_command

    def startup_command(self) -> tuple[str, ...]:
        """The configured override if non-empty, else the default command."""
        override = self.config.startup_override(self.id)
        if override:
            return tuple(override)
        return self.default_startup_command()

    def mcp_target(self) -> RegistrationTarget:
        """The MCP registration this agent should have."""
        return RegistrationTarget(name=self.config.mcp.name, url=self.config.mcp.url)

    def log_path(self) -> Path:
        return Path(self.config.runner.log_dir) / f"agent-{self.id}.log"

    # -- Lifecycle -----------------------------------------------------------

    def schedule(self) -> None:
        """Start an update-and-start attempt on a background thread.

        Returns immediately.

        Raises:
            AlreadySchedulingError: If an attempt is already in flight.
            AgentStateError: If the agent is running or stopping.
        """
        with self._lock:
            phase = self._state.phase
            if phase in IN_FLIGHT_PHASES:
                raise AlreadySchedulingError(f"Agent '{self.id}' is already scheduling")
            if phase not in SCHEDULABLE_PHASES:
                raise AgentStateError(
                    f"Agent '{self.id}' cannot be scheduled while {phase.name.lower()}"
                )

            command = self.startup_command()
            self._cancel_requested = False
            self._state.phase = AgentPhase.SCHEDULED
            self._state.last_failure = None
            self._state.effective_startup_command = command

            worker = threading.Thread(
                target=self._run_attempt,
                args=(command,),
                name=f"agent-{self.id}",
                daemon=True,
            )
            self._worker = worker

        self.notifier.publish(self, AgentPhase.SCHEDULED)
        worker.start()

    def stop(self) -> None:
        """Stop the agent.

        A running process is terminated, and killed if it outlives the grace
        period. An attempt that has not spawned yet is cancelled and ends in
        STOPPED without a process.
        """
        with self._transition:
            with self._lock:
                phase = self._state.phase
                if phase in IN_FLIGHT_PHASES:
                    self._cancel_requested = True
                    logger.info("agent_cancel_requested", agent_id=self.id, phase=phase.name)
                    return
                if phase != AgentPhase.RUNNING:
                    return

                process = self._state.process
                self._state.phase = AgentPhase.STOPPING

            logger.info("stopping_agent", agent_id=self.id, pid=process.pid)
            timeout = self.config.runner.stop_timeout_ms / 1000.0
            try:
                exit_code = process.stop(timeout=timeout)
            except Exception:
                logger.exception("agent_stop_error", agent_id=self.id)
                exit_code = process.exit_code

            self._process_exited(process, exit_code)

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the in-flight attempt to finish.

        Returns:
            True if no attempt is still running.
        """
        worker = self._worker
        if worker is None or worker is threading.current_thread():
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _run_attempt(self, command: tuple[str, ...]) -> None:
        """Background body of schedule(); never raises."""
        try:
            with self._lock:
                if self._cancel_requested:
                    cancelled = True
                else:
                    cancelled = False
                    self._state.phase = AgentPhase.CHECKING_UPDATES
            if cancelled:
                self._finish_cancelled()
                return

            try:
                self.check_for_updates(command)
            except UpdateCheckFailure as e:
                with self._lock:
                    cancelled = self._cancel_requested
                if cancelled:
                    logger.info("update_failure_after_cancel", agent_id=self.id, error=str(e))
                    self._finish_cancelled()
                    return
                self._fail(AgentStatus(str(e), error=e, exit_code=e.exit_code))
                return

            self._start_process(command)
        except Exception as e:
            logger.exception("schedule_attempt_error", agent_id=self.id)
            self._fail(
                AgentStatus(f"Could not start {self.display_name}: {e}", error=e)
            )

    def _start_process(self, command: tuple[str, ...]) -> None:
        with self._transition:
            process: AgentProcess | None = None
            status: AgentStatus | None = None
            with self._lock:
                if self._cancel_requested:
                    cancelled = True
                else:
                    cancelled = False
                    self._state.phase = AgentPhase.STARTING
                    logger.info(
                        "spawning_agent",
                        agent_id=self.id,
                        command=list(command),
                        working_dir=self.config.runner.working_dir,
                    )
                    try:
                        process = self.runner.spawn(command, log_path=self.log_path())
                    except ProcessLaunchError as e:
                        status = AgentStatus(str(e), error=e)
                        self._state.phase = AgentPhase.FAILED
                        self._state.last_failure = status
                    else:
                        self._state.process = process
                        self._state.phase = AgentPhase.RUNNING

            if cancelled:
                self._finish_cancelled()
                return
            if status is not None:
                logger.error("agent_spawn_failed", agent_id=self.id, error=status.message)
                self.notifier.publish(self, AgentPhase.FAILED, status)
                return

            watcher = threading.Thread(
                target=self._watch,
                args=(process,),
                name=f"agent-{self.id}-watch",
                daemon=True,
            )
            self.notifier.publish(self, AgentPhase.RUNNING)
            watcher.start()

    def _watch(self, process: AgentProcess) -> None:
        try:
            exit_code = process.wait()
        except Exception:
            logger.exception("agent_wait_error", agent_id=self.id)
            exit_code = process.exit_code
        self._process_exited(process, exit_code, requested=False)

    def _process_exited(
        self,
        process: AgentProcess,
        exit_code: int | None,
        requested: bool = True,
    ) -> None:
        """Record the exit of process; later calls for the same process are ignored.

        Exits the watcher sees while stopping are left to stop() to report.
        """
        with self._lock:
            if self._state.process is not process:
                return
            if not requested and self._state.phase == AgentPhase.STOPPING:
                return
            self._state.process = None

            if self._state.phase == AgentPhase.STOPPING:
                phase = AgentPhase.STOPPED
                status = None
            else:
                error = UnexpectedProcessExit(self.id, exit_code)
                phase = AgentPhase.FAILED
                status = AgentStatus(str(error), error=error, exit_code=exit_code)
                self._state.last_failure = status
            self._state.phase = phase

        logger.info(
            "agent_process_exited",
            agent_id=self.id,
            exit_code=exit_code,
            phase=phase.name,
        )
        self.notifier.publish(self, phase, status)

    def _finish_cancelled(self) -> None:
        with self._lock:
            self._cancel_requested = False
            self._state.phase = AgentPhase.STOPPED
        logger.info("agent_start_cancelled", agent_id=self.id)
        self.notifier.publish(self, AgentPhase.STOPPED)

    def _fail(self, status: AgentStatus) -> None:
        with self._lock:
            self._state.phase = AgentPhase.FAILED
            self._state.last_failure = status
        logger.error("agent_attempt_failed", agent_id=self.id, error=status.message)
        self.notifier.publish(self, AgentPhase.FAILED, status)

    # -- Update routine ------------------------------------------------------

    def check_for_updates(
        self, command: Sequence[str] | None = None
    ) -> ReconcileResult | None:
        """Update the agent and reconcile its MCP registration.

        Does nothing when command (the resolved startup command) differs from
        the default: a customized command is managed by the user.

        Returns:
            The reconciliation result, if reconciliation ran.

        Raises:
            UpdateCheckFailure: If the updater fails and the kind does not
                treat updates as best-effort.
        """
        if command is None:
            command = self.startup_command()
        if tuple(command) != self.default_startup_command():
            logger.info("update_check_skipped", agent_id=self.id, reason="custom_command")
            return None

        runner = self.runner
        self._run_updater(runner)

        mcp = self.config.mcp
        server_enabled = mcp.server_enabled
        if mcp.prompt and not server_enabled and self._prompt is not None:
            try:
                self._dispatch(self._prompt_for_mcp)
            except Exception:
                logger.exception("mcp_prompt_dispatch_error", agent_id=self.id)

        if not server_enabled:
            return None

        try:
            return self.reconcile_registration(runner)
        except Exception:
            logger.exception("registration_reconcile_error", agent_id=self.id)
            return None

    def _run_updater(self, runner: ProcessRunner) -> None:
        command = self.descriptor.update_command
        if not command:
            return

        logger.info("updating_agent", agent_id=self.id, command=list(command))
        try:
            result = runner.run(command)
        except ProcessLaunchError as e:
            failure = UpdateCheckFailure(self.id, None, [str(e)])
            failure.__cause__ = e
        else:
            if result.ok:
                logger.info("agent_updated", agent_id=self.id)
                return
            failure = UpdateCheckFailure(self.id, result.exit_code, result.stderr_lines)

        if self.descriptor.update_best_effort:
            logger.warning("update_check_failed", agent_id=self.id, error=str(failure))
            return
        raise failure

    def _prompt_for_mcp(self) -> None:
        try:
            accepted = self._prompt()
        except Exception:
            logger.exception("mcp_prompt_error", agent_id=self.id)
            return
        if accepted:
            self.config.mcp.server_enabled = True
            logger.info("mcp_server_enabled", agent_id=self.id)

    def reconcile_registration(
        self, runner: ProcessRunner | None = None
    ) -> ReconcileResult:
        """Converge the agent's MCP registration list to mcp_target()."""
        target = self.mcp_target()
        reconciler = RegistrationReconciler.for_descriptor(
            runner or self.runner, self.descriptor, target
        )
        result = reconciler.reconcile(target)
        logger.info(
            "registration_reconciled",
            agent_id=self.id,
            converged=result.converged,
            commands=len(result.commands),
            warnings=len(result.warnings),
        )
        return result

    def get_version(self) -> str:
        """First line of the version command's output, or VERSION_NOT_FOUND."""
        try:
            result = self.runner.run(
                self.descriptor.version_command, timeout=VERSION_TIMEOUT_SECONDS
            )
            if result.ok and result.stdout_lines:
                return result.stdout_lines[0]
            logger.debug("version_unavailable", agent_id=self.id, exit_code=result.exit_code)
        except Exception as e:
            logger.debug("version_error", agent_id=self.id, error=str(e))
        return VERSION_NOT_FOUND
