"""Application factory: wires storage, the engine and the HTTP layer together."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Tuple

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.error_recovery import health_checker
from .core.dispatcher import NodeDispatcher
from .core.execution_engine import ExecutionEngine
from .core.execution_recorder import ExecutionRecorder
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware
from .core.templates import TemplateResolver
from .core.workflow_manager import WorkflowManager
from .services.completion import GeminiCompletionClient
from .services.file_extraction import LocalFileExtractor
from .services.http_client import build_api_caller
from .storage import database
from .storage.migrations import run_migrations
from .api.endpoints import router, init_dependencies

# Checks that must pass before the service accepts traffic
READINESS_CHECKS = ("database", "execution_engine")


class ApplicationState:
    """Components built during startup, kept for the CLI and for tests."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.workflow_manager: Optional[WorkflowManager] = None
        self.execution_recorder: Optional[ExecutionRecorder] = None
        self.execution_engine: Optional[ExecutionEngine] = None


app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> None:
    """Bind the configured database, create tables and run migrations.

    A failed migration is logged and startup continues; the tables are
    usable without the extra indexes.
    """
    database.configure_database(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args()
    )
    database.create_tables()
    logger.info(f"Database ready ({config.database_type.value})")

    try:
        run_migrations()
    except Exception as e:
        logger.warning(f"Database migrations failed: {e}")


def build_execution_engine(config: AppConfig, recorder: Optional[ExecutionRecorder] = None,
                           completion_client=None) -> ExecutionEngine:
    """Wire the dispatcher and its capabilities from configuration."""
    if completion_client is None:
        completion_client = GeminiCompletionClient(
            api_key=config.gemini_api_key,
            base_url=config.gemini_base_url,
            timeout=config.completion_timeout
        )

    dispatcher = NodeDispatcher(
        completion_client=completion_client,
        file_extractor=LocalFileExtractor(config.upload_dir),
        api_caller=build_api_caller(config),
        resolver=TemplateResolver(config.variable_aliases),
        default_model=config.default_model
    )

    return ExecutionEngine(
        dispatcher,
        recorder=recorder,
        abort_on_capability_error=config.abort_on_capability_error
    )


def initialize_core_components(config: AppConfig, logger) -> Tuple[WorkflowManager, ExecutionRecorder, ExecutionEngine]:
    workflow_manager = WorkflowManager()
    execution_recorder = ExecutionRecorder(record_node_executions=config.record_node_executions)
    execution_engine = build_execution_engine(config, recorder=execution_recorder)

    if not config.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; prompt nodes will report errors")
    logger.info(f"Core components initialized (api node mode: {config.api_node_mode.value})")

    return workflow_manager, execution_recorder, execution_engine


def setup_health_checks(config: AppConfig, execution_engine: ExecutionEngine, logger) -> None:
    """Register the database, engine and completion checks with the global health checker."""

    def check_database():
        with database.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return "Database connection successful"

    def check_execution_engine():
        return {
            "message": "Execution engine operational",
            "abort_on_capability_error": sorted(execution_engine.abort_on_capability_error)
        }

    def check_completion_client():
        if not config.gemini_api_key:
            return "GEMINI_API_KEY not set; prompt nodes report errors"
        return f"Completion client configured for {config.default_model}"

    health_checker.clear()
    health_checker.register_check("database", check_database, timeout=config.health_check_timeout)
    health_checker.register_check("execution_engine", check_execution_engine, timeout=2.0)
    health_checker.register_check("completion_client", check_completion_client, timeout=2.0)
    logger.info(f"Health checks registered: {', '.join(health_checker.checks)}")


def create_lifespan_handler(config: AppConfig):

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            initialize_database(config, logger)
            workflow_manager, execution_recorder, execution_engine = initialize_core_components(config, logger)
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        app_state.config = config
        app_state.workflow_manager = workflow_manager
        app_state.execution_recorder = execution_recorder
        app_state.execution_engine = execution_engine

        init_dependencies(
            workflow_manager=workflow_manager,
            execution_engine=execution_engine,
            execution_recorder=execution_recorder
        )
        setup_health_checks(config, execution_engine, logger)
        logger.info("Application startup completed")

        yield

        logger.info(f"Shutting down {config.app_name}")
        database.engine.dispose()

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Settings to use; the global configuration when omitted

    Returns:
        FastAPI: Application whose lifespan initializes storage and the engine

    Raises:
        ValueError: If the configuration is invalid
    """
    config = config or get_config()
    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Execution engine for workflows built from AI, API, logic and file nodes",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )
    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)
    app.include_router(create_health_router(config))

    return app


def create_health_router(config: AppConfig) -> APIRouter:
    """Liveness, readiness and component health endpoints."""
    health = APIRouter(tags=["health"])
    service_name = config.app_name.lower().replace(" ", "-")

    def stamped(**body):
        return {**body, "timestamp": datetime.utcnow().isoformat()}

    @health.get("/")
    async def root():
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @health.get("/health")
    async def health_check():
        return {"status": "healthy", "service": service_name, "version": config.app_version}

    @health.get("/health/detailed")
    async def detailed_health_check():
        """Run every registered check; 503 when any of them fails."""
        results = await health_checker.run_all_checks()
        return JSONResponse(
            status_code=200 if results["overall_status"] == "healthy" else 503,
            content={"service": service_name, "version": config.app_version, **results}
        )

    @health.get("/health/ready")
    async def readiness_check():
        results = {
            name: await health_checker.run_check(name)
            for name in READINESS_CHECKS if name in health_checker.checks
        }
        ready = bool(results) and all(result["status"] == "healthy" for result in results.values())
        return JSONResponse(status_code=200 if ready else 503,
                            content=stamped(ready=ready, checks=results))

    @health.get("/health/live")
    async def liveness_check():
        return stamped(alive=True)

    return health


def get_app_state() -> ApplicationState:
    return app_state
