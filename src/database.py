from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DB_TIMEOUT_SEC, SQLALCHEMY_DATABASE_URL


def make_engine(url: str = SQLALCHEMY_DATABASE_URL):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": DB_TIMEOUT_SEC}
    return create_engine(url, connect_args=connect_args, echo=False)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None) -> None:
    # models must be imported so their tables are registered on Base
    from . import model  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
