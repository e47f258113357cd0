"""Import all models so SQLAlchemy metadata knows about them."""
from coursevault.models.base import Base
from coursevault.models.user import User
from coursevault.models.file_record import Category, DEFAULT_CATEGORY, FileRecord, ProcessingStatus
from coursevault.models.favorite import FavoriteSubject
from coursevault.models.job import Job

__all__ = [
    "Base",
    "User", "FileRecord", "Category", "DEFAULT_CATEGORY", "ProcessingStatus",
    "FavoriteSubject", "Job",
]
