from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from config import settings

connect_args = {"check_same_thread": False} if settings.DB_URL.startswith("sqlite") else {}

db_engine = create_engine(
    settings.DB_URL,
    connect_args=connect_args,
    echo=False
)

LocalSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

Base = declarative_base()


def enable_sqlite_foreign_keys(engine):
    if engine.url.get_backend_name() != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(db_engine)


def obtain_db_session():
    dbSession = LocalSession()
    try:
        yield dbSession
    finally:
        dbSession.close()
