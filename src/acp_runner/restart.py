"""Restarting agents after configuration changes."""

from typing import Any, Callable

import structlog

from .config import Config
from .controller import AgentController
from .exceptions import AgentStateError
from .service import AgentService

logger = structlog.get_logger()

# Asks the user once whether active agents should be restarted
RestartConfirmation = Callable[[], bool]


def lifecycle_snapshot(config: Config) -> dict[str, Any]:
    """Configuration values that only take effect when an agent restarts."""
    return {
        "working_dir": config.runner.working_dir,
        "file_read": config.runner.file_read,
        "file_write": config.runner.file_write,
        "mcp_server_enabled": config.mcp.server_enabled,
        "mcp_http_port": config.mcp.http_port,
        "mcp_name": config.mcp.name,
        "agents": {
            agent_id: agent.model_dump() for agent_id, agent in config.agents.items()
        },
    }


def changed_settings(before: Config, after: Config) -> list[str]:
    """Names of lifecycle-relevant settings that differ between two configs."""
    old = lifecycle_snapshot(before)
    new = lifecycle_snapshot(after)
    return [key for key in old if old[key] != new[key]]


def needs_restart(before: Config, after: Config) -> bool:
    """True if running agents must restart to pick up the new config."""
    return bool(changed_settings(before, after))


def restart_agents(
    controller: AgentController,
    confirm: RestartConfirmation,
    timeout: float | None = None,
) -> list[AgentService]:
    """Restart every running or scheduled agent if the user agrees.

    confirm() is asked at most once, and only when there is something to
    restart.

    Returns:
        The services that were rescheduled. Agents whose cancelled attempt
        has not finished within timeout, or that cannot be scheduled again,
        are skipped.
    """
    active = controller.active()
    if not active:
        return []

    if not confirm():
        logger.info("restart_declined", agent_count=len(active))
        return []

    restarted = []
    for service in active:
        logger.info("restarting_agent", agent_id=service.id)
        service.stop()
        if not service.wait(timeout):
            logger.warning("restart_skipped", agent_id=service.id, reason="attempt still running")
            continue
        try:
            service.schedule()
        except AgentStateError as e:
            logger.warning("restart_skipped", agent_id=service.id, reason=str(e))
            continue
        restarted.append(service)
    return restarted


def apply_config(
    controller: AgentController,
    config: Config,
    confirm: RestartConfirmation,
    timeout: float | None = None,
) -> list[AgentService]:
    """Install a new config and restart active agents if it requires it.

    Returns:
        The services that were rescheduled.
    """
    changes = changed_settings(controller.config, config)
    controller.config = config

    if not changes:
        return []

    logger.info("lifecycle_settings_changed", settings=changes)
    return restart_agents(controller, confirm, timeout)
