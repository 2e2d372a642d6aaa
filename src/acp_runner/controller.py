"""Registry of all configured agent services."""

from typing import Iterable, Iterator

import structlog

from .config import Config
from .descriptor import BUILTIN_DESCRIPTORS, AgentDescriptor, descriptor_from_config
from .exceptions import AgentNotFoundError
from .notify import AgentServiceListener, LifecycleNotifier
from .process import ProcessRunner
from .service import AgentService, Dispatcher, McpPrompt, dispatch_in_thread

logger = structlog.get_logger()


class AgentController:
    """Owns exactly one AgentService per agent kind.

    The registry is filled once at construction and keeps registration order.
    User-facing code goes through the controller to schedule and stop agents.
    """

    def __init__(self, config: Config, notifier: LifecycleNotifier | None = None):
        self._config = config
        self.notifier = notifier or LifecycleNotifier()
        self._services: dict[str, AgentService] = {}

    @classmethod
    def from_services(
        cls,
        config: Config,
        services: Iterable[AgentService],
        notifier: LifecycleNotifier | None = None,
    ) -> "AgentController":
        """Build a controller around already constructed services.

        Raises:
            ValueError: If two services share an id.
        """
        controller = cls(config, notifier)
        for service in services:
            if service.id in controller._services:
                raise ValueError(f"Duplicate agent id '{service.id}'")
            service.notifier = controller.notifier
            controller._services[service.id] = service
        logger.info("agents_registered", agents=list(controller._services))
        return controller

    @property
    def config(self) -> Config:
        return self._config

    @config.setter
    def config(self, config: Config) -> None:
        """Replace the configuration; agents read it on their next schedule()."""
        self._config = config
        for service in self._services.values():
            service.config = config

    def __iter__(self) -> Iterator[AgentService]:
        return iter(self._services.values())

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._services

    def agents(self) -> list[AgentService]:
        """All services in registration order."""
        return list(self._services.values())

    def get(self, agent_id: str) -> AgentService:
        """Look up a service by agent id.

        Raises:
            AgentNotFoundError: If no agent has that id.
        """
        try:
            return self._services[agent_id]
        except KeyError:
            raise AgentNotFoundError(agent_id) from None

    def schedule(self, agent_id: str) -> AgentService:
        """Schedule an agent to start; see AgentService.schedule()."""
        service = self.get(agent_id)
        logger.info("scheduling_agent", agent_id=agent_id)
        service.schedule()
        return service

    def stop(self, agent_id: str) -> AgentService:
        """Stop an agent; see AgentService.stop()."""
        service = self.get(agent_id)
        service.stop()
        return service

    def active(self) -> list[AgentService]:
        """Services that are running or have an attempt in flight."""
        return [s for s in self._services.values() if s.is_running() or s.is_scheduled()]

    def add_listener(self, listener: AgentServiceListener) -> None:
        self.notifier.add_listener(listener)

    def remove_listener(self, listener: AgentServiceListener) -> None:
        self.notifier.remove_listener(listener)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop all agents, cancelling attempts that have not spawned yet.

        Args:
            timeout: Seconds to wait for each in-flight attempt to finish.
        """
        active = self.active()
        if not active:
            return

        logger.info("shutting_down", agent_count=len(active))
        for service in active:
            service.stop()
        for service in active:
            service.wait(timeout)
        logger.info("shutdown_complete")


def build_descriptors(config: Config) -> list[AgentDescriptor]:
    """Built-in agent kinds followed by kinds declared in config."""
    descriptors = list(BUILTIN_DESCRIPTORS)
    known = {d.id for d in descriptors}
    for agent_id, kind in config.kinds.items():
        if agent_id in known:
            raise ValueError(f"Agent kind '{agent_id}' is already defined")
        descriptors.append(descriptor_from_config(agent_id, kind))
        known.add(agent_id)
    return descriptors


def create_controller(
    config: Config,
    prompt: McpPrompt | None = None,
    dispatch: Dispatcher = dispatch_in_thread,
    runner: ProcessRunner | None = None,
    notifier: LifecycleNotifier | None = None,
) -> AgentController:
    """Create the process-wide controller with one service per agent kind.

    Call once at the entry point and pass the controller to whatever needs it.
    """
    notifier = notifier or LifecycleNotifier()
    services = [
        AgentService(
            descriptor,
            config,
            notifier=notifier,
            runner=runner,
            prompt=prompt,
            dispatch=dispatch,
        )
        for descriptor in build_descriptors(config)
    ]
    return AgentController.from_services(config, services, notifier)
