"""Tests for command execution and agent process handles."""

import os
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from acp_runner.exceptions import ProcessLaunchError
from acp_runner.process import AgentProcess, ProcessResult, ProcessRunner


class TestProcessResult:
    """Tests for ProcessResult."""

    def test_ok(self):
        """Test that only exit code 0 is ok."""
        assert ProcessResult(exit_code=0).ok is True
        assert ProcessResult(exit_code=1).ok is False

    def test_immutable(self):
        """Test that results cannot be modified."""
        result = ProcessResult(exit_code=0, stdout_lines=("a",))
        with pytest.raises(AttributeError):
            result.exit_code = 1


class TestProcessRunnerRun:
    """Tests for ProcessRunner.run()."""

    def test_captures_output_lines(self, temp_dir):
        """Test that stdout and stderr are split into ordered lines."""
        runner = ProcessRunner(working_dir=temp_dir)

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess(
                args=["agent", "mcp", "list"],
                returncode=0,
                stdout="first\nsecond\n",
                stderr="warning\n",
            )

            result = runner.run(["agent", "mcp", "list"])

        assert result == ProcessResult(
            exit_code=0,
            stdout_lines=("first", "second"),
            stderr_lines=("warning",),
        )

    def test_passes_working_dir_and_env(self, temp_dir):
        """Test that the child runs in the working dir with merged env."""
        runner = ProcessRunner(working_dir=temp_dir, env={"API_KEY": "secret"})

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")
            runner.run(["agent", "--version"])

            kwargs = mock_run.call_args.kwargs
            assert mock_run.call_args.args[0] == ["agent", "--version"]
            assert kwargs["cwd"] == temp_dir
            assert kwargs["env"]["API_KEY"] == "secret"
            assert kwargs["env"].get("PATH") == os.environ.get("PATH")

    def test_non_zero_exit_is_a_result(self):
        """Test that a failing command is returned, not raised."""
        runner = ProcessRunner()

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 3, "", "bad flag\n")
            result = runner.run(["agent", "--bogus"])

        assert result.exit_code == 3
        assert result.stderr_lines == ("bad flag",)

    def test_missing_executable_raises_launch_error(self):
        """Test that a missing executable raises ProcessLaunchError."""
        runner = ProcessRunner()

        with patch("subprocess.run", side_effect=FileNotFoundError(2, "No such file")):
            with pytest.raises(ProcessLaunchError, match="agent") as exc_info:
                runner.run(["agent", "--version"])

        assert exc_info.value.command == ["agent", "--version"]
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_real_command(self, temp_dir):
        """Test running a real interpreter in the working dir."""
        runner = ProcessRunner(working_dir=temp_dir, env={"ACP_TEST": "yes"})

        result = runner.run([
            sys.executable,
            "-c",
            "import os, sys; print(os.environ['ACP_TEST']); print('oops', file=sys.stderr)",
        ])

        assert result.ok
        assert result.stdout_lines == ("yes",)
        assert result.stderr_lines == ("oops",)

    def test_real_missing_executable(self):
        """Test that an unknown program is a launch error."""
        runner = ProcessRunner()
        with pytest.raises(ProcessLaunchError):
            runner.run(["definitely-not-an-acp-agent-binary"])


class TestProcessRunnerSpawn:
    """Tests for ProcessRunner.spawn()."""

    def test_spawn_returns_live_handle(self, temp_dir):
        """Test that spawn starts the process with pipes and returns a handle."""
        runner = ProcessRunner(working_dir=temp_dir)

        with patch("subprocess.Popen") as mock_popen:
            mock_process = MagicMock()
            mock_process.pid = 12345
            mock_popen.return_value = mock_process

            handle = runner.spawn(["claude-code-acp"])

            cmd = mock_popen.call_args.args[0]
            kwargs = mock_popen.call_args.kwargs
            assert cmd == ["claude-code-acp"]
            assert kwargs["stdin"] == subprocess.PIPE
            assert kwargs["stdout"] == subprocess.PIPE
            assert kwargs["cwd"] == temp_dir
            assert handle.pid == 12345
            assert handle.command == ["claude-code-acp"]

    def test_spawn_creates_log_directory(self, temp_dir):
        """Test that the log directory is created if it doesn't exist."""
        log_path = temp_dir / "nested" / "logs" / "agent-test.log"
        runner = ProcessRunner()

        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = MagicMock(pid=1)
            handle = runner.spawn(["agent"], log_path=log_path)

            assert log_path.parent.exists()
            assert mock_popen.call_args.kwargs["stderr"] is handle.log_file

        handle._close_files()

    def test_spawn_failure_raises_launch_error(self, temp_dir):
        """Test that a spawn OSError becomes ProcessLaunchError."""
        runner = ProcessRunner()
        log_path = temp_dir / "agent.log"

        with patch("subprocess.Popen", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(ProcessLaunchError, match="Permission denied"):
                runner.spawn(["agent"], log_path=log_path)


class TestAgentProcess:
    """Tests for AgentProcess."""

    def make_handle(self, **popen_attrs) -> tuple[AgentProcess, MagicMock]:
        popen = MagicMock()
        popen.pid = 12345
        for key, value in popen_attrs.items():
            setattr(popen, key, value)
        return AgentProcess(command=["agent"], popen=popen), popen

    def test_stop_terminates_process(self):
        """Test that stop closes stdin and terminates the process."""
        handle, popen = self.make_handle(returncode=0)
        popen.poll.return_value = None

        exit_code = handle.stop(timeout=1.0)

        popen.stdin.close.assert_called_once()
        popen.terminate.assert_called_once()
        popen.wait.assert_called()
        popen.kill.assert_not_called()
        popen.stdout.close.assert_called_once()
        assert exit_code == 0

    def test_stop_force_kills_on_timeout(self):
        """Test that stop force kills if graceful shutdown times out."""
        handle, popen = self.make_handle(returncode=-9)
        popen.poll.return_value = None
        popen.wait.side_effect = [
            subprocess.TimeoutExpired(cmd="agent", timeout=1.0),
            None,
        ]

        exit_code = handle.stop(timeout=1.0)

        popen.terminate.assert_called_once()
        popen.kill.assert_called_once()
        assert exit_code == -9

    def test_stop_already_exited(self):
        """Test that stopping an exited process sends no signals."""
        handle, popen = self.make_handle(returncode=1)
        popen.poll.return_value = 1

        assert handle.stop() == 1
        popen.terminate.assert_not_called()
        popen.stdout.close.assert_called_once()

    def test_poll_and_is_alive(self):
        """Test liveness reporting."""
        handle, popen = self.make_handle()
        popen.poll.return_value = None
        assert handle.is_alive() is True
        assert handle.poll() is None

        popen.poll.return_value = 0
        assert handle.is_alive() is False
        assert handle.poll() == 0

    def test_real_process_lifecycle(self, temp_dir):
        """Test spawning and stopping a real long-running process."""
        runner = ProcessRunner(working_dir=temp_dir)
        handle = runner.spawn(
            [sys.executable, "-c", "import sys; sys.stdin.read()"],
            log_path=temp_dir / "agent.log",
        )

        assert handle.is_alive() is True
        handle.stop(timeout=5.0)

        assert handle.is_alive() is False
        assert handle.exit_code is not None
        assert handle.log_file is None
        assert handle.stdout.closed is True
        assert handle.stdin.closed is True

    def test_wait_releases_pipes(self):
        """Test that waiting out an exit closes the agent's pipes."""
        handle, popen = self.make_handle()
        popen.wait.return_value = 3

        assert handle.wait() == 3
        popen.stdout.close.assert_called_once()
        popen.stdin.close.assert_called_once()
