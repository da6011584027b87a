import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, transaction_timeout: int = 10) -> Engine:
    """
    Build the persistence engine.

    Every transaction is bounded by ``transaction_timeout`` seconds: that is
    both the longest we wait for a pooled connection and, on PostgreSQL, the
    server-side statement timeout. Exceeding it rolls the transaction back.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": transaction_timeout},
        )

    engine = create_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,
        pool_timeout=transaction_timeout,
        connect_args={"connect_timeout": transaction_timeout},
    )

    @event.listens_for(engine, "connect")
    def set_statement_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"SET statement_timeout = '{int(transaction_timeout)}s'")
            cursor.execute(f"SET lock_timeout = '{int(transaction_timeout)}s'")
        except Exception as e:
            logger.warning(f"Could not set statement timeout: {e}")
        finally:
            cursor.close()

    return engine


def create_db_and_tables(engine: Engine) -> None:
    # Models must be imported so their tables are registered on the metadata
    import pagepulse.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
