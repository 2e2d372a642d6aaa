"""Pytest configuration and fixtures for runner tests."""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from acp_runner.config import Config, McpConfig, RunnerConfig
from acp_runner.descriptor import AgentDescriptor
from acp_runner.notify import AgentServiceListener
from acp_runner.process import ProcessResult


class FakeProcess:
    """Stands in for AgentProcess; exits when told to."""

    _next_pid = 1000

    def __init__(self, command: list[str]):
        FakeProcess._next_pid += 1
        self.command = command
        self.pid = FakeProcess._next_pid
        self.exit_code: int | None = None
        self.stop_calls = 0
        self._exited = threading.Event()

    def is_alive(self) -> bool:
        return not self._exited.is_set()

    def poll(self) -> int | None:
        return self.exit_code

    def wait(self, timeout: float | None = None) -> int | None:
        self._exited.wait(timeout)
        return self.exit_code

    def exit(self, code: int) -> None:
        if not self._exited.is_set():
            self.exit_code = code
            self._exited.set()

    def stop(self, timeout: float = 5.0) -> int | None:
        self.stop_calls += 1
        self.exit(-15)
        return self.exit_code


class FakeRunner:
    """Scripted ProcessRunner.

    Results registered with on() are returned in order; the last one repeats.
    Commands without results succeed with no output.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.spawned: list[FakeProcess] = []
        self.spawn_error: Exception | None = None
        self.gate: threading.Event | None = None  # Blocks run() until set
        self.entered = threading.Event()  # Set when run() is first called
        self._results: dict[tuple[str, ...], list] = {}

    def on(self, command, *outcomes) -> None:
        self._results.setdefault(tuple(command), []).extend(outcomes)

    def run(self, command, timeout=None) -> ProcessResult:
        cmd = tuple(command)
        self.calls.append(cmd)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)

        queue = self._results.get(cmd)
        if not queue:
            return ProcessResult(exit_code=0)
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def spawn(self, command, log_path=None) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess(list(command))
        self.spawned.append(process)
        return process


class FakeRegistrationCli:
    """ProcessRunner that keeps an MCP registration list like an agent CLI."""

    def __init__(self, lines: list[str] | None = None, accept_adds: bool = True):
        self.lines = list(lines or [])
        self.accept_adds = accept_adds
        self.calls: list[tuple[str, ...]] = []

    def run(self, command, timeout=None) -> ProcessResult:
        cmd = tuple(command)
        self.calls.append(cmd)
        action = cmd[2]
        if action == "list":
            return ProcessResult(exit_code=0, stdout_lines=tuple(self.lines))
        if action == "add":
            name, url = cmd[-2], cmd[-1]
            if self.accept_adds:
                self.lines.append(f"{name}: {url} (SSE) - ✓ Connected")
            return ProcessResult(exit_code=0)
        if action == "remove":
            name = cmd[-1]
            self.lines = [line for line in self.lines if name not in line]
            return ProcessResult(exit_code=0)
        return ProcessResult(exit_code=1, stderr_lines=("unknown command",))

    def corrective_calls(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[2] != "list"]


class RecordingListener(AgentServiceListener):
    """Records lifecycle callbacks."""

    def __init__(self):
        self.events: list[tuple[str, str]] = []
        self.statuses = []
        self.process_live_on_start: list[bool] = []

    def agent_scheduled(self, service):
        self.events.append(("scheduled", service.id))

    def agent_started(self, service):
        process = service.process
        self.process_live_on_start.append(process is not None and process.is_alive())
        self.events.append(("started", service.id))

    def agent_stopped(self, service):
        self.events.append(("stopped", service.id))

    def agent_failed(self, service, status):
        self.statuses.append(status)
        self.events.append(("failed", service.id))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll predicate until it is true or the timeout elapses."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_descriptor(agent_id: str = "test-agent", **overrides) -> AgentDescriptor:
    fields = dict(
        id=agent_id,
        display_name=f"Test Agent {agent_id}",
        folder_name=agent_id,
        default_startup_command=(agent_id, "--acp"),
        version_command=(agent_id, "--version"),
        registration_list_command=(agent_id, "mcp", "list"),
        registration_add_command=(agent_id, "mcp", "add", "{name}", "{url}"),
        registration_remove_command=(agent_id, "mcp", "remove", "{name}"),
    )
    fields.update(overrides)
    return AgentDescriptor(**fields)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Config with MCP integration off and a short stop timeout."""
    return Config(
        runner=RunnerConfig(
            working_dir=str(temp_dir),
            log_dir=str(temp_dir / "logs"),
            stop_timeout_ms=100,
        ),
        mcp=McpConfig(server_enabled=False, prompt=False, http_port=9000),
    )


@pytest.fixture
def runner():
    """Scripted runner; any processes still alive are exited afterwards."""
    fake = FakeRunner()
    yield fake
    if fake.gate is not None:
        fake.gate.set()
    for process in fake.spawned:
        process.exit(0)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def sample_config_toml():
    """Sample runner config as TOML string."""
    return """
[runner]
working_dir = "/tmp/agents"
log_dir = "test_logs"
stop_timeout_ms = 2000
file_read = true
file_write = false

[mcp]
server_enabled = true
prompt = false
http_port = 9000
name = "eclipse-ide"

[agents.claude-code-acp]
startup_command = ["claude-code-acp", "--debug"]
env = { ANTHROPIC_API_KEY = "test-key" }

[kinds.my-agent]
display_name = "My Agent"
startup_command = ["my-agent", "--acp"]
version_command = ["my-agent", "--version"]
list_command = ["my-agent", "mcp", "list"]
add_command = ["my-agent", "mcp", "add", "{name}", "{url}"]
remove_command = ["my-agent", "mcp", "remove", "{name}"]
update_command = ["my-agent", "update"]
update_best_effort = true
"""


@pytest.fixture
def config_file(temp_dir, sample_config_toml):
    """Create a temporary config file."""
    config_path = temp_dir / "test_config.toml"
    config_path.write_text(sample_config_toml)
    return config_path
