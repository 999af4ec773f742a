"""Command line entry point for the CI pipeline runner."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from cipipeline.config.environment import EnvironmentConfig, load_environment_config
from cipipeline.config.exceptions import ConfigurationError
from cipipeline.config.loader import load_pipeline
from cipipeline.config.models import PipelineDefinition
from cipipeline.credentials import CredentialStore, CredentialStoreError
from cipipeline.logging import get_logger
from cipipeline.logging.config import configure_logging
from cipipeline.notifications import NotificationService
from cipipeline.persistence import (
    BuildHistory,
    BuildRepository,
    PersistenceError,
    close_database,
    get_session,
    init_database,
)
from cipipeline.pipeline import PipelineRunner, PipelineRunResult
from cipipeline.scheduler import SchedulerService
from cipipeline.steps import StepExecutor
from cipipeline.utils.timestamps import format_timestamp
from cipipeline.validation import check_meterian_pipeline, check_pipeline, has_errors, summarize

logger = get_logger(__name__, component="cli")

LOG_LEVEL_CHOICES = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cipipeline",
        description="Sequential CI pipeline runner with scoped credential binding",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVEL_CHOICES,
        help="Log level (overrides LOG_LEVEL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a pipeline definition")
    run_parser.add_argument("definition", type=Path, help="Path to the pipeline YAML")
    run_parser.add_argument(
        "--daemon",
        action="store_true",
        help="Keep running and trigger the pipeline on its configured interval",
    )

    validate_parser = subparsers.add_parser("validate", help="Check a definition without running it")
    validate_parser.add_argument("definition", type=Path, help="Path to the pipeline YAML")
    validate_parser.add_argument(
        "--meterian",
        action="store_true",
        help="Also check the Build/Test/Meterian Scan/Deploy layout",
    )

    history_parser = subparsers.add_parser("history", help="Show recorded builds of a pipeline")
    history_parser.add_argument("pipeline_name", help="Pipeline name as declared in its definition")
    history_parser.add_argument("--limit", type=int, default=20, help="Number of builds (default: 20)")

    return parser


def load_runtime_config(
    definition_path: Path, log_level_override: Optional[str]
) -> Tuple[PipelineDefinition, EnvironmentConfig]:
    """
    Load the definition and environment settings.

    Log level priority: CLI > LOG_LEVEL > INFO.

    Raises:
        ConfigurationError: If either is invalid
    """
    definition = load_pipeline(definition_path)
    env_config = load_environment_config()

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = "INFO"

    return definition, env_config


def build_runner(definition: PipelineDefinition, env_config: EnvironmentConfig) -> PipelineRunner:
    """
    Wire the runner's collaborators.

    Raises:
        ConfigurationError: If the credentials file cannot be read
    """
    try:
        credential_store = CredentialStore(credentials_file=env_config.credentials_file)
    except CredentialStoreError as e:
        raise ConfigurationError(
            f"Cannot load credentials: {e}",
            suggestions=[
                "CREDENTIALS_FILE must hold a 'credentials' mapping of id to secret",
                "Or export CIPIPELINE_CREDENTIAL_<id> variables instead",
            ],
        ) from e

    history: Optional[BuildHistory] = None
    try:
        init_database(env_config.database_url)
        history = BuildHistory()
    except PersistenceError as e:
        logger.error(
            f"Build history disabled: {e}",
            extra={"event": "history.unavailable", "error_type": type(e).__name__},
        )

    return PipelineRunner(
        definition=definition,
        env_config=env_config,
        step_executor=StepExecutor(env_config.workspace, credential_store),
        history=history,
        notification_service=NotificationService() if env_config.notifications_enabled else None,
    )


def run_command(args: argparse.Namespace, start_time: float) -> int:
    definition, env_config = load_runtime_config(args.definition, args.log_level)
    configure_logging(
        level=env_config.log_level,
        format_type=env_config.log_format,
        environment=os.environ.get("ENVIRONMENT", "local"),
    )

    logger.info(
        f"Pipeline runner starting: {definition.name}",
        extra={
            "event": "service.starting",
            "definition": str(args.definition),
            "pipeline": definition.name,
            "stages": definition.stage_names(),
            "daemon": args.daemon,
            "workspace": str(env_config.workspace),
        },
    )

    if args.daemon and definition.triggers is None:
        raise ConfigurationError(
            f"Pipeline '{definition.name}' has no triggers",
            suggestions=["Add 'triggers: {interval: 15m}' or run without --daemon"],
        )

    runner = build_runner(definition, env_config)

    if not args.daemon:
        try:
            result = runner.run_once()
        finally:
            close_database()

        print(format_run_summary(result))
        logger.info(
            "Pipeline runner stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )
        return result.exit_code

    shutdown_event = threading.Event()
    scheduler_service = SchedulerService(
        pipeline_callable=runner.run_once,
        interval_seconds=definition.triggers.interval_seconds,
        pipeline_name=definition.name,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info("Scheduler started. Press Ctrl+C to stop", extra={"event": "service.daemon_mode.started"})

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down", extra={"event": "service.keyboard_interrupt"})
        scheduler_service.shutdown(wait=False)
    finally:
        close_database()

    logger.info(
        "Pipeline runner stopped",
        extra={
            "event": "service.stopping",
            "uptime_seconds": round(time.time() - start_time, 2),
        },
    )
    return EXIT_SUCCESS


def validate_command(args: argparse.Namespace) -> int:
    definition = load_pipeline(args.definition)

    findings = check_pipeline(definition, environ=os.environ)
    if args.meterian:
        findings = check_meterian_pipeline(definition) + findings

    for finding in findings:
        print(f"  {finding}")

    errors, warnings_count = summarize(findings)
    if has_errors(findings):
        print(f"✗ {args.definition}: {errors} error(s), {warnings_count} warning(s)")
        return EXIT_FAILURE

    print(f"✓ {args.definition} is valid ({warnings_count} warning(s))")
    return EXIT_SUCCESS


def history_command(args: argparse.Namespace) -> int:
    env_config = load_environment_config()
    init_database(env_config.database_url)
    try:
        with get_session() as session:
            builds = BuildRepository(session).list_builds(args.pipeline_name, limit=args.limit)
    finally:
        close_database()

    if not builds:
        print(f"No builds recorded for '{args.pipeline_name}'")
        return EXIT_SUCCESS

    for line in format_history(builds):
        print(line)
    return EXIT_SUCCESS


def format_run_summary(result: PipelineRunResult) -> str:
    if result.skipped:
        return f"{result.pipeline_name}: skipped (previous run still in progress)"

    number = "-" if result.build_number is None else result.build_number
    lines = [f"{result.pipeline_name} #{number}: {result.status.value} ({result.total_duration_seconds:.1f}s)"]
    for stage in result.stage_results:
        detail = stage.skip_reason or stage.error_message
        suffix = f" - {detail}" if detail else ""
        lines.append(f"  {stage.name:<20} {stage.status.value}{suffix}")
    return "\n".join(lines)


def format_history(builds) -> List[str]:
    lines = [f"{'#':>5}  {'STATUS':<9} {'STARTED':<24} DURATION"]
    for build in builds:
        duration = "-" if build.duration_seconds is None else f"{build.duration_seconds:.1f}s"
        lines.append(
            f"{build.build_number:>5}  {build.status:<9} {format_timestamp(build.started_at):<24} {duration}"
        )
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        0 on SUCCESS, 2 on UNSTABLE, 1 on FAILURE or configuration errors
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        if args.command == "run":
            return run_command(args, start_time)
        if args.command == "validate":
            return validate_command(args)
        return history_command(args)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={
                "event": "config.error",
                "error_type": "ConfigurationError",
                "definition": str(e.definition_path) if e.definition_path else None,
            },
        )
        return EXIT_FAILURE
    except PersistenceError as e:
        print(f"Build history error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
