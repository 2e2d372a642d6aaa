"""CLI entry point for the runner."""

import argparse
import logging
import signal
import threading
import tomllib
from pathlib import Path

import structlog
from pydantic import ValidationError

from .config import Config, find_config, load_config
from .controller import AgentController, create_controller
from .exceptions import AgentNotFoundError, RunnerError
from .notify import LoggingListener


def setup_signal_handlers(shutdown: threading.Event) -> None:
    """Set shutdown when SIGINT or SIGTERM arrives."""
    logger = structlog.get_logger()

    def handler(signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("signal_received", signal=sig_name)
        shutdown.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def configure_logging(verbose: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acp-runner",
        description="Supervise ACP agent CLIs and keep their MCP registration in sync",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path or name of runner TOML config file",
    )
    parser.add_argument(
        "--working-dir",
        type=str,
        default=None,
        help="Directory agents run in (overrides config)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Agent log directory (overrides config)",
    )
    parser.add_argument(
        "--mcp-port",
        type=int,
        default=None,
        help="MCP server HTTP port (overrides config)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="List configured agents and their versions")

    version = commands.add_parser("version", help="Print an agent's version")
    version.add_argument("agent_id")

    reconcile = commands.add_parser(
        "reconcile", help="Bring an agent's MCP registration up to date"
    )
    reconcile.add_argument("agent_id")

    run = commands.add_parser("run", help="Start agents and supervise them")
    run.add_argument("agent_ids", nargs="+", metavar="agent_id")

    return parser


def load_runner_config(args: argparse.Namespace) -> Config:
    """Load the config named on the command line and apply CLI overrides."""
    logger = structlog.get_logger()

    if args.config:
        try:
            config_path = find_config(args.config)
        except FileNotFoundError:
            config_path = Path(args.config)
            if not config_path.exists():
                logger.error("config_not_found", path=args.config)
                raise SystemExit(1)

        config = load_config(config_path)
        logger.info("config_loaded", path=str(config_path))
    else:
        config = Config()
        logger.info("using_default_config")

    if args.working_dir:
        config.runner.working_dir = args.working_dir
    if args.log_dir:
        config.runner.log_dir = args.log_dir
    if args.mcp_port:
        config.mcp.http_port = args.mcp_port

    return config


def cmd_list(controller: AgentController) -> int:
    for service in controller.agents():
        print(f"{service.id}\t{service.display_name}\t{service.get_version()}")
    return 0


def cmd_version(controller: AgentController, agent_id: str) -> int:
    print(controller.get(agent_id).get_version())
    return 0


def cmd_reconcile(controller: AgentController, agent_id: str) -> int:
    service = controller.get(agent_id)
    result = service.reconcile_registration()
    for command in result.commands:
        print("ran: " + " ".join(command))
    for warning in result.warnings:
        print(f"warning: {warning}")
    print("registered" if result.converged else "not registered")
    return 0 if result.converged else 1


def cmd_run(controller: AgentController, agent_ids: list[str]) -> int:
    logger = structlog.get_logger()

    for agent_id in agent_ids:
        controller.get(agent_id)

    shutdown = threading.Event()
    setup_signal_handlers(shutdown)

    for agent_id in agent_ids:
        controller.schedule(agent_id)

    try:
        while not shutdown.wait(0.5):
            if not controller.active():
                logger.info("no_active_agents")
                break
    finally:
        controller.shutdown()

    failed = [s.id for s in controller.agents() if s.last_failure is not None]
    return 1 if failed else 0


def main() -> None:
    """Run the agent runner."""
    args = build_parser().parse_args()
    configure_logging(args.verbose)
    logger = structlog.get_logger()

    try:
        config = load_runner_config(args)
        controller = create_controller(config)
    except (ValidationError, tomllib.TOMLDecodeError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        raise SystemExit(1)
    controller.add_listener(LoggingListener())

    try:
        if args.command == "list":
            code = cmd_list(controller)
        elif args.command == "version":
            code = cmd_version(controller, args.agent_id)
        elif args.command == "reconcile":
            code = cmd_reconcile(controller, args.agent_id)
        else:
            code = cmd_run(controller, args.agent_ids)
    except AgentNotFoundError as e:
        logger.error("unknown_agent", agent_id=e.agent_id, known=[s.id for s in controller])
        raise SystemExit(1)
    except RunnerError as e:
        logger.error("runner_error", error=str(e))
        raise SystemExit(1)

    raise SystemExit(code)


if __name__ == "__main__":
    main()
