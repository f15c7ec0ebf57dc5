from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings

# Support both PostgreSQL and SQLite via centralized settings
DATABASE_URL = settings.database_url


def configure_sqlite(sqlite_engine):
    """
    Let SQLAlchemy own transaction boundaries on SQLite so SAVEPOINTs
    (used by the audit and notification sinks) behave as on PostgreSQL.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


if DATABASE_URL.startswith("postgresql"):
    # Row locks (SELECT ... FOR UPDATE) taken by the aggregator need READ COMMITTED or stricter
    engine = create_engine(DATABASE_URL, isolation_level="READ COMMITTED", pool_pre_ping=True)
else:
    # SQLite configuration for local development/testing
    engine = configure_sqlite(create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}
    ))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """
    Session Provider: Provides a database session per request.
    Transaction management is handled explicitly in the Service Layer.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    """
    Registers all domain models and initializes the database schema.
    This should be called during the application startup lifespan.
    """
    # Import all models to ensure they are registered with Base.metadata before create_all
    from app.models import (  # noqa: F401
        organization, department, employee,
        leave_type, leave_request,
        time_entry, attendance_summary,
        payroll, audit_log, notification
    )
    Base.metadata.create_all(bind=engine)
