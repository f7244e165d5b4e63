"""Database handle with an explicit open/close lifecycle.

The application lifespan constructs one ``Database`` from settings, opens it at
startup and closes it at shutdown. Stores and registries receive the handle
through their constructors instead of importing a module-level engine.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
	pass


class Database:
	def __init__(self, url: str, *, echo: bool = False):
		self.url = url
		self.echo = echo
		self._engine: Engine | None = None
		self._sessions: sessionmaker[Session] | None = None

	@property
	def is_open(self) -> bool:
		return self._engine is not None

	@property
	def engine(self) -> Engine:
		if self._engine is None:
			raise RuntimeError("Database not opened")
		return self._engine

	@property
	def supports_delete_returning(self) -> bool:
		return bool(getattr(self.engine.dialect, "delete_returning", False))

	def open(self) -> None:
		if self._engine is not None:
			return
		connect_args = {}
		if self.url.startswith("sqlite"):
			# Request handlers and the sweep thread share the same file.
			connect_args["check_same_thread"] = False
		self._engine = create_engine(self.url, echo=self.echo, connect_args=connect_args, pool_pre_ping=True)
		self._sessions = sessionmaker(bind=self._engine, autocommit=False, autoflush=False, expire_on_commit=False)

	def create_tables(self) -> None:
		# Model modules must be imported so every table is registered on Base.metadata.
		from aggregator.models import db as _models  # noqa: F401
		Base.metadata.create_all(bind=self.engine)

	def close(self) -> None:
		if self._engine is None:
			return
		self._engine.dispose()
		self._engine = None
		self._sessions = None

	@contextmanager
	def session(self) -> Iterator[Session]:
		"""Plain session; the caller decides when to commit."""
		if self._sessions is None:
			raise RuntimeError("Database not opened")
		session = self._sessions()
		try:
			yield session
		except Exception:
			session.rollback()
			raise
		finally:
			session.close()

	@contextmanager
	def transaction(self) -> Iterator[Session]:
		"""Session wrapped in a single transaction, committed on clean exit."""
		with self.session() as session:
			with session.begin():
				yield session


__all__ = ["Base", "Database"]
