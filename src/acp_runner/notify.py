"""Lifecycle transition fan-out to listeners."""

import threading
from typing import TYPE_CHECKING

import structlog

from .state import AgentPhase, AgentStatus

if TYPE_CHECKING:
    from .service import AgentService

logger = structlog.get_logger()


class AgentServiceListener:
    """Receives agent lifecycle transitions.

    Callbacks run on the thread that performed the transition and must return
    quickly. Override only the callbacks you need.
    """

    def agent_scheduled(self, service: "AgentService") -> None:
        pass

    def agent_started(self, service: "AgentService") -> None:
        pass

    def agent_stopped(self, service: "AgentService") -> None:
        pass

    def agent_failed(self, service: "AgentService", status: AgentStatus) -> None:
        pass


class LifecycleNotifier:
    """Delivers transitions to listeners in registration order."""

    def __init__(self) -> None:
        self._listeners: list[AgentServiceListener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: AgentServiceListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: AgentServiceListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listeners(self) -> list[AgentServiceListener]:
        with self._lock:
            return list(self._listeners)

    def publish(
        self,
        service: "AgentService",
        phase: AgentPhase,
        status: AgentStatus | None = None,
    ) -> None:
        """Invoke the callback matching phase on every listener.

        Phases without a callback (checking updates, starting, stopping) are
        not delivered. A listener that raises is logged and skipped.
        """
        for listener in self.listeners:
            try:
                if phase == AgentPhase.SCHEDULED:
                    listener.agent_scheduled(service)
                elif phase == AgentPhase.RUNNING:
                    listener.agent_started(service)
                elif phase == AgentPhase.STOPPED:
                    listener.agent_stopped(service)
                elif phase == AgentPhase.FAILED:
                    listener.agent_failed(
                        service, status or AgentStatus("Agent failed")
                    )
            except Exception:
                logger.exception(
                    "listener_error",
                    agent_id=service.id,
                    phase=phase.name,
                    listener=type(listener).__name__,
                )


class LoggingListener(AgentServiceListener):
    """Writes lifecycle transitions to the log."""

    def agent_scheduled(self, service: "AgentService") -> None:
        logger.info("agent_scheduled", agent_id=service.id)

    def agent_started(self, service: "AgentService") -> None:
        process = service.process
        logger.info(
            "agent_started",
            agent_id=service.id,
            pid=process.pid if process else None,
        )

    def agent_stopped(self, service: "AgentService") -> None:
        logger.info("agent_stopped", agent_id=service.id)

    def agent_failed(self, service: "AgentService", status: AgentStatus) -> None:
        logger.error(
            "agent_failed",
            agent_id=service.id,
            message=status.message,
            exit_code=status.exit_code,
        )
