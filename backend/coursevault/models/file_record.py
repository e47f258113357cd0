"""FileRecord model - authoritative file metadata (bytes live in blob storage)."""
from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from coursevault.models.base import Base, BigIntId, TimestampMixin


class Category(str, Enum):
    MATERIALY = "Materialy"
    OTAZKY = "Otazky"
    PREDNASKY = "Prednasky"
    SEMINARE = "Seminare"


DEFAULT_CATEGORY = Category.MATERIALY


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileRecord(Base, TimestampMixin):
    __tablename__ = "uploaded_files"
    __table_args__ = (
        # Dedup lookups used by the reconciliation jobs
        Index("idx_uploaded_files_storage_path", "filepath"),
        Index("idx_uploaded_files_structural_key", "subject_name", "original_filename", "category"),
        Index("idx_uploaded_files_owner_subject_category", "user_id", "subject_name", "category"),
        Index("idx_subject_category_date", "subject_name", "category", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    # Relative to the storage root for canonical blobs, absolute for imported legacy files
    storage_path: Mapped[str] = mapped_column("filepath", String(1000), nullable=False)
    subject_name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_CATEGORY.value)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    file_extension: Mapped[str] = mapped_column(String(10), nullable=False)
    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProcessingStatus.PENDING.value
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<FileRecord id={self.id} subject={self.subject_name!r} path={self.storage_path!r}>"
