"""Authoritative file metadata in the relational store.

Every write runs inside a single transaction (`session.begin()`): any
exception rolls back and propagates, so the caller can run its own
compensation (deleting the blob it just copied).
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursevault.database import async_session
from coursevault.models import FavoriteSubject, FileRecord, User

logger = logging.getLogger(__name__)

_SEQUENCED_TABLES = {"uploaded_files", "users"}


class RecordNotFoundError(LookupError):
    """Raised when an update targets a record that no longer exists."""
    pass


class MetadataStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """One atomic unit of work; rolls back and re-raises on error."""
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    # ── Writes ───────────────────────────────────────────────────

    async def create_or_update(self, values: dict[str, Any], existing_id: int | None = None) -> FileRecord:
        """Insert a new record, or update `existing_id` in place."""
        async with self.transaction() as session:
            if existing_id is None:
                record = FileRecord(**values)
                session.add(record)
            else:
                record = await session.get(FileRecord, existing_id)
                if record is None:
                    raise RecordNotFoundError(f"File record {existing_id} no longer exists")
                for key, value in values.items():
                    setattr(record, key, value)
            await session.flush()
            await session.refresh(record)
            return record

    async def insert_with_id(self, file_id: int, values: dict[str, Any]) -> FileRecord:
        """Insert a record keeping an identifier issued before the store was lost."""
        return await self.create_or_update({**values, "id": file_id})

    async def resync_id_sequence(self, table: str = "uploaded_files") -> None:
        """Move a PostgreSQL id sequence past explicitly inserted ids."""
        if table not in _SEQUENCED_TABLES:
            raise ValueError(f"Unknown table: {table}")
        async with self.transaction() as session:
            if session.get_bind().dialect.name != "postgresql":
                return
            await session.execute(text(
                f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                f"COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)"
            ))

    async def wipe(self) -> dict[str, int]:
        """Remove every file and favorite row.

        Foreign-key checks are deferred for the duration of the transaction
        and are back in force once it commits.
        """
        async with self.transaction() as session:
            counts = {
                "uploaded_files": await session.scalar(select(func.count()).select_from(FileRecord)) or 0,
                "favorite_subjects": await session.scalar(select(func.count()).select_from(FavoriteSubject)) or 0,
            }
            dialect = session.get_bind().dialect.name
            if dialect == "postgresql":
                await session.execute(text("SET CONSTRAINTS ALL DEFERRED"))
                await session.execute(text("TRUNCATE TABLE favorite_subjects, uploaded_files RESTART IDENTITY"))
            else:
                if dialect == "sqlite":
                    await session.execute(text("PRAGMA defer_foreign_keys = ON"))
                await session.execute(delete(FavoriteSubject))
                await session.execute(delete(FileRecord))
        logger.warning(
            f"Wiped {counts['uploaded_files']} file record(s) and "
            f"{counts['favorite_subjects']} favorite(s)"
        )
        return counts

    # ── Lookups ──────────────────────────────────────────────────

    async def get(self, file_id: int) -> FileRecord | None:
        async with self.session_factory() as session:
            return await session.get(FileRecord, file_id)

    async def find_by_storage_path(self, storage_path: str) -> FileRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(FileRecord)
                .where(FileRecord.storage_path == storage_path)
                .order_by(FileRecord.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_structural_key(
        self, subject_name: str, original_filename: str, category: str
    ) -> list[FileRecord]:
        """All records sharing (subject, original filename, category), lowest id first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(FileRecord)
                .where(
                    FileRecord.subject_name == subject_name,
                    FileRecord.original_filename == original_filename,
                    FileRecord.category == category,
                )
                .order_by(FileRecord.id)
            )
            return list(result.scalars().all())

    async def count_files(self) -> int:
        async with self.session_factory() as session:
            return await session.scalar(select(func.count()).select_from(FileRecord)) or 0

    async def iter_records(self, batch_size: int = 100) -> AsyncIterator[FileRecord]:
        """Stream all records in id order, one short session per batch."""
        last_id = 0
        while True:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(FileRecord)
                    .where(FileRecord.id > last_id)
                    .order_by(FileRecord.id)
                    .limit(batch_size)
                )
                batch = list(result.scalars().all())
            if not batch:
                return
            for record in batch:
                yield record
            last_id = batch[-1].id

    # ── Owners ───────────────────────────────────────────────────

    async def get_user(self, user_id: int) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def count_users(self) -> int:
        async with self.session_factory() as session:
            return await session.scalar(select(func.count()).select_from(User)) or 0

    async def ensure_user(self, user_id: int, name: str, email: str) -> tuple[User, bool]:
        """Return the user with `user_id`, creating it when missing."""
        existing = await self.get_user(user_id)
        if existing is not None:
            return existing, False
        async with self.transaction() as session:
            user = User(id=user_id, name=name, email=email)
            session.add(user)
            await session.flush()
            await session.refresh(user)
        await self.resync_id_sequence("users")
        logger.info(f"Created owner {name} (ID: {user_id})")
        return user, True
