import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one process.

    Built once at startup and handed to every component that needs
    storage, instead of module-level engines that reconnect per call.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url

        # Handle SQLite special case for check_same_thread
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}

        self.engine: Engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=echo,
            pool_pre_ping=True,
        )
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def ping(self) -> bool:
        """Run a trivial query; False when the database does not answer"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False

    def create_tables(self) -> None:
        """Create all tables in the database"""
        # Import models so they register on Base.metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.session_factory()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """Dependency to get database session"""
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
