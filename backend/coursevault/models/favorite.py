"""FavoriteSubject model - a user's pinned subjects."""
from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from coursevault.models.base import Base, BigIntId, TimestampMixin


class FavoriteSubject(Base, TimestampMixin):
    __tablename__ = "favorite_subjects"
    __table_args__ = (
        UniqueConstraint("user_id", "subject_name", name="uq_favorite_subjects_user_subject"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
