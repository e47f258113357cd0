"""User model - owners of uploaded files."""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from coursevault.models.base import Base, BigIntId, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
