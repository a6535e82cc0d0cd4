"""SQLAlchemy database models for the Shelfnote content store."""
import datetime
import logging
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String,
                        Table, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from shelfnote.config import config

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column(
        "note_id", String(64),
        ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    ),
    Column(
        "tag_id", String(64),
        ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True
    ),
)


class DBFolder(Base):
    """Database model for a folder."""
    __tablename__ = "folders"
    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    parent_id = Column(
        String(64), ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True, index=True
    )
    color = Column(String(20), nullable=True)
    icon = Column(String(10), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of folder."""
        return f"<Folder(id='{self.id}', name='{self.name}', parent='{self.parent_id}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    folder_id = Column(
        String(64), ForeignKey("folders.id", ondelete="SET NULL"),
        nullable=True, index=True
    )
    is_favorite = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(String(64), primary_key=True)
    name = Column(String(50), unique=True, nullable=False)
    color = Column(String(7), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id='{self.id}', name='{self.name}')>"


class DBMark(Base):
    """Database model for a mark."""
    __tablename__ = "marks"
    id = Column(String(64), primary_key=True)
    tag_id = Column(
        String(64), ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    type = Column(String(10), nullable=False)
    content = Column(Text, nullable=True)
    url = Column(String(2000), nullable=True)
    desc = Column(String(500), nullable=True)
    deleted = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of mark."""
        return f"<Mark(id='{self.id}', tag='{self.tag_id}', type='{self.type}')>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and make sure the schema exists.

    SQLite settings applied on every connection:
    - foreign_keys=ON so join rows and marks can never dangle
    - WAL journal + NORMAL synchronous for file databases
    - pysqlite's implicit transaction handling is switched off and an explicit
      BEGIN is emitted at the start of every transaction, so a check followed
      by a write (cycle detection, delete guards) runs in one real SQLite
      transaction instead of starting at the first DML statement

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database.

    Returns:
        The initialized engine.
    """
    url = db_url or config.get_db_url()
    in_memory = url in ("sqlite://", "sqlite:///:memory:")

    if in_memory:
        # One shared connection, otherwise each checkout would see a fresh
        # empty database
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={"timeout": 30},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Take over transaction control from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    logger.info(f"Database initialized: {engine.url}")
    return engine


def reset_db(engine: Engine) -> None:
    """Drop and recreate every table. Intended for tests and demos."""
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    logger.warning(f"Database reset: {engine.url}")


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
