from datetime import datetime
from sqlalchemy import Column, String, Integer, BigInteger, Boolean, DateTime, Text, Index
from sqlalchemy.orm import declarative_base


Base = declarative_base()


class BackupRecord(Base):
    """Finalized backup job (completed or failed)"""
    __tablename__ = 'backup_history'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    backup_type = Column(String(20), nullable=False)  # daily, weekly, monthly, manual
    status = Column(String(20), nullable=False)  # completed or failed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)  # naive UTC
    size_bytes = Column(BigInteger, default=0, nullable=False)
    compressed = Column(Boolean, default=False, nullable=False)
    compression_format = Column(String(20))
    checksum = Column(String(200))  # "<algorithm>:<hex>"
    file_count = Column(Integer, default=0, nullable=False)
    directory_count = Column(Integer, default=0, nullable=False)
    source_bytes = Column(BigInteger, default=0, nullable=False)
    duration_ms = Column(BigInteger, default=0, nullable=False)
    location = Column(String(500))  # Relative to the backup root
    error_message = Column(Text)
    logs = Column(Text)  # Detailed execution logs

    __table_args__ = (
        Index('ix_backup_history_type_status_created', 'backup_type', 'status', 'created_at'),
    )

    def __repr__(self):
        return f'<BackupRecord {self.id} type={self.backup_type} status={self.status}>'
