"""
Durable catalog of finalized backup jobs.

Records are appended once a job completes or fails and are only ever
removed by retention cleanup. The catalog lives in a SQLAlchemy database
(a SQLite file under the backup root by default). A catalog that cannot be
read at startup is moved aside and replaced by an empty one.
"""

import logging
import os
import threading
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import create_engine, select, func, delete
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DatabaseError, IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from snapvault.models import Base, BackupRecord
from .types import BackupMetadata, BackupStatus, BackupType


logger = logging.getLogger(__name__)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _to_metadata(record: BackupRecord) -> BackupMetadata:
    return BackupMetadata(
        id=record.id,
        name=record.name,
        backup_type=BackupType(record.backup_type),
        created_at=record.created_at.replace(tzinfo=timezone.utc),
        size=record.size_bytes or 0,
        compressed=bool(record.compressed),
        checksum=record.checksum,
        file_count=record.file_count or 0,
        directory_count=record.directory_count or 0,
        source_bytes=record.source_bytes or 0,
        duration_ms=record.duration_ms or 0,
        status=BackupStatus(record.status),
        error=record.error_message,
        location=record.location,
        compression_format=record.compression_format,
        logs=record.logs,
    )


def _to_record(metadata: BackupMetadata) -> BackupRecord:
    return BackupRecord(
        id=metadata.id,
        name=metadata.name,
        backup_type=metadata.backup_type.value,
        status=metadata.status.value,
        created_at=_to_naive_utc(metadata.created_at),
        size_bytes=metadata.size,
        compressed=metadata.compressed,
        compression_format=metadata.compression_format,
        checksum=metadata.checksum,
        file_count=metadata.file_count,
        directory_count=metadata.directory_count,
        source_bytes=metadata.source_bytes,
        duration_ms=metadata.duration_ms,
        location=metadata.location,
        error_message=metadata.error,
        logs=metadata.logs,
    )


def _type_value(backup_type: Union[BackupType, str]) -> str:
    return BackupType.parse(backup_type).value


class HistoryStore:
    """
    Append-only catalog of BackupMetadata.

    Writers are serialized with a lock; every call uses its own session and
    returns detached BackupMetadata copies.
    """

    def __init__(self, url: str):
        """
        Open (or create) the catalog.

        Args:
            url: SQLAlchemy database URL, e.g. sqlite:////data/backups/history.db
        """
        self.url = url
        self._write_lock = threading.Lock()
        self._engine = None
        self._session_factory = None
        self._open()

    def _create_engine(self):
        url = make_url(self.url)
        if url.get_backend_name() == 'sqlite':
            database = url.database
            if database and database != ':memory:':
                os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
                return create_engine(self.url, connect_args={'check_same_thread': False})
            return create_engine(
                self.url,
                connect_args={'check_same_thread': False},
                poolclass=StaticPool,
            )
        return create_engine(self.url)

    def _open(self):
        self._engine = self._create_engine()
        try:
            Base.metadata.create_all(self._engine)
            with self._engine.connect() as conn:
                conn.execute(select(func.count(BackupRecord.id))).scalar()
        except DatabaseError as e:
            logger.warning(f"Backup history at {self.url} is unreadable, starting with an empty history: {e}")
            self._engine.dispose()
            self._quarantine()
            self._engine = self._create_engine()
            Base.metadata.create_all(self._engine)

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(f"Backup history opened: {self.url} ({self.count()} records)")

    def _quarantine(self):
        """Move an unreadable SQLite catalog file out of the way."""
        url = make_url(self.url)
        database = url.database
        if url.get_backend_name() != 'sqlite' or not database or database == ':memory:':
            raise RuntimeError(f"Cannot recover unreadable backup history at {self.url}")

        if os.path.exists(database):
            stamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
            corrupt_path = f"{database}.corrupt-{stamp}"
            os.replace(database, corrupt_path)
            logger.warning(f"Moved unreadable backup history to {corrupt_path}")

    def append(self, metadata: BackupMetadata):
        """
        Add a finalized record.

        Raises:
            ValueError: If a record with the same id already exists
        """
        with self._write_lock, self._session_factory() as session:
            session.add(_to_record(metadata))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ValueError(f"Backup {metadata.id} is already in the history")

    def get(self, backup_id: str) -> Optional[BackupMetadata]:
        with self._session_factory() as session:
            record = session.get(BackupRecord, backup_id)
            return _to_metadata(record) if record else None

    def all(self, limit: Optional[int] = None) -> List[BackupMetadata]:
        """All records, newest first."""
        query = select(BackupRecord).order_by(
            BackupRecord.created_at.desc(), BackupRecord.id.desc()
        )
        if limit is not None:
            query = query.limit(max(0, limit))

        with self._session_factory() as session:
            return [_to_metadata(r) for r in session.scalars(query).all()]

    def latest(self, backup_type: Optional[Union[BackupType, str]] = None,
               status: Optional[BackupStatus] = None) -> Optional[BackupMetadata]:
        """Most recent record, optionally restricted to a type and/or status."""
        query = select(BackupRecord)
        if backup_type is not None:
            query = query.where(BackupRecord.backup_type == _type_value(backup_type))
        if status is not None:
            query = query.where(BackupRecord.status == BackupStatus(status).value)
        query = query.order_by(BackupRecord.created_at.desc(), BackupRecord.id.desc()).limit(1)

        with self._session_factory() as session:
            record = session.scalars(query).first()
            return _to_metadata(record) if record else None

    def list_by_type(self, backup_type: Union[BackupType, str],
                     status: BackupStatus = BackupStatus.COMPLETED) -> List[BackupMetadata]:
        """Records of one type and status, oldest first."""
        query = select(BackupRecord).where(
            BackupRecord.backup_type == _type_value(backup_type),
            BackupRecord.status == BackupStatus(status).value,
        ).order_by(BackupRecord.created_at.asc(), BackupRecord.id.asc())

        with self._session_factory() as session:
            return [_to_metadata(r) for r in session.scalars(query).all()]

    def count_by_type(self, backup_type: Union[BackupType, str],
                      status: BackupStatus = BackupStatus.COMPLETED) -> int:
        query = select(func.count(BackupRecord.id)).where(
            BackupRecord.backup_type == _type_value(backup_type),
            BackupRecord.status == BackupStatus(status).value,
        )
        with self._session_factory() as session:
            return session.execute(query).scalar() or 0

    def count(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.count(BackupRecord.id))).scalar() or 0

    def remove(self, backup_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        with self._write_lock, self._session_factory() as session:
            result = session.execute(delete(BackupRecord).where(BackupRecord.id == backup_id))
            session.commit()
            return result.rowcount > 0

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
