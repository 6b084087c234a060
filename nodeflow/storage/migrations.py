"""Database migrations for query performance."""

from sqlalchemy import text
from . import database
from ..core.logging import get_logger

logger = get_logger(__name__)


INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_workflows_user_id ON workflows(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_workflow_executions_workflow_id ON workflow_executions(workflow_id)",
    "CREATE INDEX IF NOT EXISTS idx_workflow_executions_status ON workflow_executions(status)",
    "CREATE INDEX IF NOT EXISTS idx_node_executions_execution_id ON node_executions(execution_id)",
    "CREATE INDEX IF NOT EXISTS idx_node_executions_execution_started ON node_executions(execution_id, started_at)",
]


def create_execution_indexes():
    """Create indexes used by execution and node record lookups."""
    try:
        with database.engine.connect() as connection:
            for statement in INDEX_STATEMENTS:
                connection.execute(text(statement))
            connection.commit()
            logger.info(f"Created {len(INDEX_STATEMENTS)} database indexes")

    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_sqlite():
    """Apply SQLite pragmas for concurrent readers. No-op on other backends."""
    if "sqlite" not in str(database.engine.url) or ":memory:" in str(database.engine.url):
        return

    try:
        with database.engine.connect() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA optimize"))
            connection.commit()
            logger.info("Applied SQLite optimizations")

    except Exception as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations():
    """Run all migrations."""
    logger.info("Starting database migrations")
    create_execution_indexes()
    optimize_sqlite()
    logger.info("Database migrations completed successfully")
