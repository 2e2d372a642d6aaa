"""Runner configuration from TOML files."""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """Per-agent overrides."""

    startup_command: list[str] = Field(default_factory=list)  # Empty = default
    env: dict[str, str] = Field(default_factory=dict)  # Env overrides


class AgentKindConfig(BaseModel):
    """An agent kind declared in config rather than built in."""

    display_name: str = ""
    folder_name: str = ""
    startup_command: list[str]
    version_command: list[str]
    list_command: list[str]
    add_command: list[str]  # "{name}" and "{url}" are substituted
    remove_command: list[str]  # "{name}" is substituted
    update_command: list[str] = Field(default_factory=list)
    update_best_effort: bool = False


class RunnerConfig(BaseModel):
    """Runner settings."""

    working_dir: str = "."
    log_dir: str = "logs"
    stop_timeout_ms: int = 5000
    file_read: bool = True  # Agents may read files and editor content
    file_write: bool = True  # Agents may write files and editor content


class McpConfig(BaseModel):
    """MCP server integration settings."""

    server_enabled: bool = False
    prompt: bool = True  # Offer to enable the server when it is disabled
    http_port: int = 8673
    name: str = "eclipse-ide"

    @property
    def url(self) -> str:
        """SSE endpoint agents are pointed at."""
        return f"http://localhost:{self.http_port}/sse"


class Config(BaseModel):
    """Complete runner configuration."""

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    mcp: McpConfig = Field(default_factory=McpConfig)
    agents: dict[str, AgentConfig] = Field(default_factory=dict)
    kinds: dict[str, AgentKindConfig] = Field(default_factory=dict)

    def get_agent_config(self, agent_id: str) -> AgentConfig:
        """Get overrides for an agent, or empty overrides if none are set."""
        return self.agents.get(agent_id) or AgentConfig()

    def startup_override(self, agent_id: str) -> list[str]:
        """Custom startup command for an agent, empty if not customized."""
        return list(self.get_agent_config(agent_id).startup_command)


def load_config(config_path: Path) -> Config:
    """Read runner, MCP, per-agent and agent kind settings from config_path.

    Sections that are left out keep their defaults. A missing file raises
    FileNotFoundError, malformed TOML raises tomllib.TOMLDecodeError and
    values of the wrong type raise pydantic.ValidationError.
    """
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return Config.model_validate(data)


def find_config(name: str) -> Path:
    """Resolve name to a config file.

    Anything that looks like a path (has a "/" or a .toml suffix) is used
    as given. A bare name is looked up in the configs/ directory next to
    the package, first with a .toml suffix and then as is.

    Raises:
        FileNotFoundError: Nothing matched.
    """
    if "/" in name or name.endswith(".toml"):
        path = Path(name)
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {name}")

    configs_dir = _configs_dir()

    config_path = configs_dir / f"{name}.toml"
    if config_path.exists():
        return config_path

    config_path = configs_dir / name
    if config_path.exists():
        return config_path

    raise FileNotFoundError(
        f"Config '{name}' not found in {configs_dir}. "
        f"Available configs: {list_configs()}"
    )


def list_configs() -> list[str]:
    """List available config names."""
    configs_dir = _configs_dir()
    if not configs_dir.exists():
        return []
    return sorted(p.stem for p in configs_dir.glob("*.toml"))


def _configs_dir() -> Path:
    return Path(__file__).parent.parent.parent / "configs"
