"""Convergence of an agent's MCP registration list to a desired entry.

The agent CLI reports its registrations as free-form text, one entry per line,
e.g.::

    eclipse-ide: http://localhost:8673/sse (SSE) - ✓ Connected
    other-tool: http://x (SSE) - ✗ Failed to connect

Name and URL are matched independently by substring, so a stale entry (right
name, wrong URL) is removed before the desired entry is added.
"""

from dataclasses import dataclass, field
from typing import Iterable, Sequence

import structlog

from .descriptor import AgentDescriptor
from .exceptions import ReconciliationWarning
from .process import ProcessRunner

logger = structlog.get_logger()

# Glyph the agent CLIs print next to registrations that fail their health check
FAILURE_MARKER = "✗"


@dataclass(frozen=True)
class RegistrationTarget:
    """Desired registration entry."""

    name: str
    url: str


@dataclass(frozen=True)
class RegistrationScan:
    """What a registration listing says about a target."""

    found_name: bool = False
    found_url: bool = False
    matched_line: str | None = None  # Last line containing the target URL

    @classmethod
    def of(cls, lines: Iterable[str], target: RegistrationTarget) -> "RegistrationScan":
        found_name = False
        found_url = False
        matched_line = None
        for line in lines:
            if target.name in line:
                found_name = True
            if target.url in line:
                found_url = True
                matched_line = line
        return cls(found_name, found_url, matched_line)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    target: RegistrationTarget
    commands: list[tuple[str, ...]] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    converged: bool = False

    @property
    def changed(self) -> bool:
        """True if any corrective command was issued."""
        return bool(self.commands)


class RegistrationReconciler:
    """Converges an external registration list to a RegistrationTarget."""

    def __init__(
        self,
        runner: ProcessRunner,
        list_command: Sequence[str],
        add_command: Sequence[str],
        remove_command: Sequence[str],
    ):
        self.runner = runner
        self.list_command = tuple(list_command)
        self.add_command = tuple(add_command)
        self.remove_command = tuple(remove_command)

    @classmethod
    def for_descriptor(
        cls,
        runner: ProcessRunner,
        descriptor: AgentDescriptor,
        target: RegistrationTarget,
    ) -> "RegistrationReconciler":
        """Reconciler using an agent kind's registration commands."""
        return cls(
            runner,
            list_command=descriptor.list_command(),
            add_command=descriptor.add_command(target),
            remove_command=descriptor.remove_command(target),
        )

    def _scan(self, target: RegistrationTarget) -> RegistrationScan:
        result = self.runner.run(self.list_command)
        return RegistrationScan.of(result.stdout_lines, target)

    def _issue(self, result: ReconcileResult, command: tuple[str, ...]) -> None:
        result.commands.append(command)
        outcome = self.runner.run(command)
        if not outcome.ok:
            logger.warning(
                "registration_command_failed",
                command=list(command),
                exit_code=outcome.exit_code,
                stderr=list(outcome.stderr_lines),
            )

    def reconcile(self, target: RegistrationTarget) -> ReconcileResult:
        """Run one reconciliation pass.

        Raises:
            ProcessLaunchError: If the agent CLI cannot be launched.
        """
        result = ReconcileResult(target=target)
        scan = self._scan(target)

        if not scan.found_url and scan.found_name:
            logger.info("removing_stale_registration", name=target.name)
            self._issue(result, self.remove_command)

        if not scan.found_url:
            logger.info("adding_registration", name=target.name, url=target.url)
            self._issue(result, self.add_command)

            scan = self._scan(target)
            if not scan.found_name and not scan.found_url:
                warning = ReconciliationWarning(
                    f"Registration '{target.name}' was not accepted by the agent"
                )
                logger.error(
                    "registration_not_confirmed", name=target.name, url=target.url
                )
                result.warnings.append(warning)

        if scan.matched_line is not None and FAILURE_MARKER in scan.matched_line:
            logger.warning("registration_reports_failure", line=scan.matched_line)
            result.warnings.append(
                ReconciliationWarning(scan.matched_line, line=scan.matched_line)
            )

        result.converged = scan.found_url
        return result
