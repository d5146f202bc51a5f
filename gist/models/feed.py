from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, VARCHAR
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gist.core.database import Base


class Feed(Base):
    __tablename__ = "feeds"
    __table_args__ = (Index("ix_feeds_url", "url", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(VARCHAR(2048), nullable=False)
    title: Mapped[str] = mapped_column(String(512), default="")
    site_url: Mapped[str | None] = mapped_column(VARCHAR(2048))
    fetch_full_text: Mapped[bool] = mapped_column(Boolean, default=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    entries = relationship("Entry", back_populates="feed", cascade="all, delete-orphan")
