from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.engine.url import make_url

from promo_engine.config import DATABASE_URL, STORE_TIMEOUT_SECONDS


def build_engine(database_url: str):
    url = make_url(database_url)
    backend = url.get_backend_name()

    # Every store round-trip is bounded: busy timeout on SQLite, statement timeout on Postgres
    connect_args = {}
    pool_args = {}
    if backend == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": STORE_TIMEOUT_SECONDS}
    else:
        pool_args = {"pool_size": 5, "max_overflow": 10}
        if backend == "postgresql":
            timeout_ms = int(STORE_TIMEOUT_SECONDS * 1000)
            connect_args = {"options": f"-c statement_timeout={timeout_ms}"}

    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,          # helps recycle stale connections
        **pool_args,
    )


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_store():
    # Imported here to avoid a cycle: the store module needs Base via the models
    from promo_engine.services.document_store import SqlDocumentStore

    return SqlDocumentStore(SessionLocal)
