"""Typed shape of documents stored in the search index.

Hits read back from Elasticsearch are validated here so untyped payloads
never reach the reconciler. Index field names are snake_case, so these
models do not use the camelCase API base classes.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coursevault.models.file_record import DEFAULT_CATEGORY, Category, FileRecord
from coursevault.services.naming import map_category_slug_to_category


class SearchDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_id: int = Field(gt=0)
    user_id: Optional[int] = None
    filename: str = "unknown"
    original_filename: str = "unknown"
    filepath: str = ""
    subject_name: str = "Unknown"
    category: Category = DEFAULT_CATEGORY
    file_extension: str = "unknown"
    file_size: int = Field(default=0, ge=0)
    content: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "filename", "original_filename", "subject_name", "file_extension", "filepath",
        mode="before",
    )
    @classmethod
    def none_to_default(cls, value, info):
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, value):
        if value is None:
            return DEFAULT_CATEGORY
        if isinstance(value, Category):
            return value
        return map_category_slug_to_category(str(value))

    @classmethod
    def from_record(cls, record: FileRecord, content: str = "") -> "SearchDocument":
        return cls(
            file_id=record.id,
            user_id=record.user_id,
            filename=record.filename,
            original_filename=record.original_filename,
            filepath=record.storage_path,
            subject_name=record.subject_name,
            category=record.category,
            file_extension=record.file_extension,
            file_size=record.file_size,
            content=content,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def to_index_body(self) -> dict:
        return self.model_dump(mode="json")


class InvalidDocument(BaseModel):
    """A hit that could not be validated; reported as a failed item."""
    hit_id: str
    reason: str
