"""Search history model."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from portal.database import Base


class Search(Base):
    """A search run by a user; kept in history and optionally saved."""

    __tablename__ = "searches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    saved = Column(Boolean, default=False, nullable=False)
    title = Column(String(255), nullable=True)
    search_params = Column(JSON, nullable=False, default=dict)
    result_count = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    user = relationship("User", back_populates="searches")

    def __repr__(self) -> str:
        return f"<Search {self.id} saved={self.saved}>"
