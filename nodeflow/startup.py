"""Command line interface: server, database, configuration and offline runs."""

import sys
import json
import asyncio
import argparse

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="NodeFlow Workflow Engine - run graphs of AI, API, logic and file nodes"
    )

    parser.add_argument("--host", help="Host to bind the server to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to bind the server to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--api-node-mode",
        choices=["simulate", "live"],
        help="Whether api nodes make real HTTP requests"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the workflow engine server")
    run_parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (default: 1)")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("migrate", help="Create indexes and tune SQLite")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    health_parser = subparsers.add_parser("health", help="Run health checks")
    health_parser.add_argument("--detailed", action="store_true", help="Run detailed health checks")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    execute_parser = subparsers.add_parser("execute", help="Run a workflow graph file without the HTTP layer")
    execute_parser.add_argument("file", help="JSON file holding {nodes, edges}")
    execute_parser.add_argument("--input", dest="initial_input", help="Initial input as JSON (plain text is used as-is)")

    return parser


PRESETS = {
    "development": get_development_config,
    "production": get_production_config,
    "testing": get_testing_config,
}


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """A preset (--env) or the .env/environment configuration, then command line overrides."""
    config = PRESETS[args.env]() if args.env else load_config(args.config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.reload:
        overrides["reload"] = True
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = LogLevel(args.log_level)
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.debug:
        overrides["debug"] = True
    if args.api_node_mode:
        overrides["api_node_mode"] = args.api_node_mode

    if overrides:
        config = AppConfig(**{**config.model_dump(), **overrides})
    return config


def run_server(config: AppConfig, workers: int = 1):
    """Run the workflow engine server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server with {workers} worker(s)")

    uvicorn_config = config.get_uvicorn_config()

    if workers > 1 or config.reload:
        # Worker processes rebuild the app from NODEFLOW_* environment variables
        uvicorn.run("nodeflow.factory:create_app", factory=True, workers=workers, **uvicorn_config)
    else:
        uvicorn.run(create_app(config), **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage import database
    from .storage.migrations import run_migrations

    logger = get_logger(__name__)
    database.configure_database(config.database_url, echo=config.database_echo,
                                connect_args=config.get_database_connect_args())

    if command == "init":
        logger.info("Initializing database tables...")
        database.create_tables()
        print("Database tables created successfully")

    elif command == "migrate":
        logger.info("Running database migrations...")
        database.create_tables()
        run_migrations()
        print("Database migrations completed successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        database.drop_tables()
        database.create_tables()
        run_migrations()
        print("Database reset completed successfully")


async def run_health_check(config: AppConfig, detailed: bool = False) -> bool:
    """Run health checks. Returns True when everything is healthy."""
    from .core.error_recovery import health_checker
    from .factory import initialize_database, setup_health_checks, build_execution_engine

    logger = get_logger(__name__)

    if not detailed:
        print(f"Service: {config.app_name}")
        print("Status: Running")
        print(f"Version: {config.app_version}")
        return True

    logger.info("Running detailed health checks...")
    initialize_database(config, logger)
    setup_health_checks(config, build_execution_engine(config), logger)
    results = await health_checker.run_all_checks()

    print(f"Overall Status: {results['overall_status']}")
    print(f"Timestamp: {results['timestamp']}")
    for check_name, result in results.get('checks', {}).items():
        print(f"  {check_name}: {result.get('status', 'unknown')} - {result.get('message', 'No message')}")

    return results['overall_status'] == 'healthy'


def show_configuration(config: AppConfig):
    rows = [
        ("App", f"{config.app_name} v{config.app_version}"),
        ("Debug", config.debug),
        ("Listen", f"{config.host}:{config.port}"),
        ("Database URL", config.database_url),
        ("Log Level", config.log_level.value),
        ("Gemini API Key", "set" if config.gemini_api_key else "not set"),
        ("Default Model", config.default_model),
        ("API Node Mode", config.api_node_mode.value),
        ("Upload Dir", config.upload_dir),
        ("Variable Aliases", config.variable_aliases),
        ("Abort On Capability Error", config.abort_on_capability_error),
        ("Record Node Executions", config.record_node_executions),
    ]
    print("Current Configuration:")
    for label, value in rows:
        print(f"  {label}: {value}")


def validate_configuration_command(config: AppConfig) -> bool:
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
        return True
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        return False


def parse_initial_input(raw):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def execute_graph_file(config: AppConfig, path: str, initial_input=None) -> dict:
    """Run a graph JSON file through the engine and return the response body."""
    from .factory import build_execution_engine
    from .models.core import WorkflowGraph

    with open(path, "r", encoding="utf-8") as handle:
        graph = WorkflowGraph.model_validate(json.load(handle))

    engine = build_execution_engine(config)
    return engine.execute(graph, initial_input=initial_input).to_response()


def main(argv=None):
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)

        if args.command == "config" and args.config_command == "validate":
            sys.exit(0 if validate_configuration_command(config) else 1)

        validate_config(config)
        setup_logging(level=config.log_level.value, log_file=config.log_file,
                      structured=config.log_structured)

        if args.command == "run" or args.command is None:
            run_server(config, getattr(args, 'workers', 1))

        elif args.command == "db":
            if not args.db_command:
                print("Database command required. Use --help for options.")
                sys.exit(1)
            run_database_command(args.db_command, config)

        elif args.command == "health":
            if not asyncio.run(run_health_check(config, args.detailed)):
                sys.exit(1)

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "execute":
            body = execute_graph_file(config, args.file, parse_initial_input(args.initial_input))
            print(json.dumps(body, indent=2, ensure_ascii=False))
            if not body.get("success"):
                sys.exit(1)

        else:
            parser.print_help()

    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
