"""Agent kind descriptors."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .config import AgentKindConfig
    from .reconcile import RegistrationTarget


def _render(template: Sequence[str], name: str, url: str = "") -> tuple[str, ...]:
    return tuple(arg.format(name=name, url=url) for arg in template)


@dataclass(frozen=True)
class AgentDescriptor:
    """Immutable description of one agent kind and its CLI commands.

    Registration commands are templates; "{name}" and "{url}" are replaced
    with the registration target when rendered.
    """

    id: str
    display_name: str
    folder_name: str
    default_startup_command: tuple[str, ...]
    version_command: tuple[str, ...]
    registration_list_command: tuple[str, ...]
    registration_add_command: tuple[str, ...]
    registration_remove_command: tuple[str, ...]
    update_command: tuple[str, ...] | None = None
    update_best_effort: bool = False

    def list_command(self) -> tuple[str, ...]:
        """Command listing the agent's MCP registrations."""
        return self.registration_list_command

    def add_command(self, target: "RegistrationTarget") -> tuple[str, ...]:
        """Command registering target with the agent."""
        return _render(self.registration_add_command, target.name, target.url)

    def remove_command(self, target: "RegistrationTarget") -> tuple[str, ...]:
        """Command removing the registration named like target."""
        return _render(self.registration_remove_command, target.name, target.url)


# Claude Code over ACP: https://github.com/zed-industries/claude-code-acp
# Its version is managed by npm, so there is no separate updater.
CLAUDE_CODE = AgentDescriptor(
    id="claude-code-acp",
    display_name="Claude Code ACP",
    folder_name="claude-code-acp",
    default_startup_command=("claude-code-acp",),
    version_command=("claude-code-acp", "--version"),
    registration_list_command=("claude-code-acp", "mcp", "list"),
    registration_add_command=(
        "claude-code-acp", "mcp", "add", "--transport", "sse", "{name}", "{url}",
    ),
    registration_remove_command=("claude-code-acp", "mcp", "remove", "{name}"),
)

GEMINI_CLI = AgentDescriptor(
    id="gemini-cli",
    display_name="Gemini CLI",
    folder_name=".gemini",
    default_startup_command=("gemini", "--experimental-acp"),
    version_command=("gemini", "--version"),
    registration_list_command=("gemini", "mcp", "list"),
    registration_add_command=(
        "gemini", "mcp", "add", "--transport", "sse", "{name}", "{url}",
    ),
    registration_remove_command=("gemini", "mcp", "remove", "{name}"),
    update_command=("npm", "install", "-g", "@google/gemini-cli@latest"),
    update_best_effort=True,
)

BUILTIN_DESCRIPTORS: tuple[AgentDescriptor, ...] = (CLAUDE_CODE, GEMINI_CLI)


def descriptor_from_config(agent_id: str, kind: "AgentKindConfig") -> AgentDescriptor:
    """Build a descriptor from a [kinds.<id>] config table."""
    return AgentDescriptor(
        id=agent_id,
        display_name=kind.display_name or agent_id,
        folder_name=kind.folder_name or agent_id,
        default_startup_command=tuple(kind.startup_command),
        version_command=tuple(kind.version_command),
        registration_list_command=tuple(kind.list_command),
        registration_add_command=tuple(kind.add_command),
        registration_remove_command=tuple(kind.remove_command),
        update_command=tuple(kind.update_command) if kind.update_command else None,
        update_best_effort=kind.update_best_effort,
    )
