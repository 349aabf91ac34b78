"""Favorites, lists and tags."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from portal.database import Base


def _now():
    return datetime.now(timezone.utc)


class Resource(Base):
    """A catalog record that somebody saved or tagged."""

    __tablename__ = "resources"
    __table_args__ = (UniqueConstraint("record_id", "source", name="uq_resources_record_source"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(255), nullable=False, index=True)
    source = Column(String(50), nullable=False, default="Solr")
    title = Column(String(255), nullable=False, default="")
    author = Column(String(255), nullable=True)
    year = Column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Resource {self.source}:{self.record_id}>"


class UserList(Base):
    """A named list of saved records."""

    __tablename__ = "user_lists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    user = relationship("User", back_populates="lists")
    entries = relationship("UserResource", back_populates="user_list", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<UserList {self.id} {self.title!r}>"


class UserResource(Base):
    """Membership of a resource in a user's list, with notes."""

    __tablename__ = "user_resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True)
    list_id = Column(Integer, ForeignKey("user_lists.id", ondelete="CASCADE"), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    saved = Column(DateTime(timezone=True), default=_now, nullable=False)

    resource = relationship("Resource")
    user_list = relationship("UserList", back_populates="entries")


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tag = Column(String(64), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Tag {self.tag}>"


class ResourceTag(Base):
    """A tag applied to a resource by a user, optionally within a list."""

    __tablename__ = "resource_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, ForeignKey("resources.id", ondelete="CASCADE"), nullable=True, index=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    list_id = Column(Integer, ForeignKey("user_lists.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    posted = Column(DateTime(timezone=True), default=_now, nullable=False)

    resource = relationship("Resource")
    tag = relationship("Tag")
