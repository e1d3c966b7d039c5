from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session
from app.core.config import settings

# check_same_thread is needed for SQLite, remove for PostgreSQL
connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)


def enable_sqlite_foreign_keys(target_engine):
    """SQLite ignores ON DELETE CASCADE unless the pragma is set per connection."""
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


def get_session():
    with Session(engine) as session:
        yield session

def create_db_and_tables(target_engine=None):
    SQLModel.metadata.create_all(target_engine or engine)
