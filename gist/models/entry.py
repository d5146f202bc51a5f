from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, VARCHAR
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gist.core.database import Base


class Entry(Base):
    __tablename__ = "entries"
    __table_args__ = (
        Index("ix_entries_feed_id_guid", "feed_id", "guid", unique=True),
        Index("ix_entries_feed_id_published_at", "feed_id", "published_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feed_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False
    )
    guid: Mapped[str] = mapped_column(VARCHAR(2048), nullable=False)
    url: Mapped[str | None] = mapped_column(VARCHAR(2048))
    title: Mapped[str] = mapped_column(String(1024), default="")
    author: Mapped[str | None] = mapped_column(String(512))
    content: Mapped[str | None] = mapped_column(Text)  # As delivered by the feed
    readable_content: Mapped[str | None] = mapped_column(Text)  # Extracted full text
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    feed = relationship("Feed", back_populates="entries")
