"""
Post and engagement counter models
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime
import enum
import uuid

from ..base import Base


class PostVisibility(str, enum.Enum):
    HIDDEN = "hidden"
    PUBLIC = "public"


class EngagementType(str, enum.Enum):
    LIKE = "like"
    VOTE = "vote"


class Post(Base):
    """
    A post on a board

    Posts carrying media start hidden and only become public once moderation
    approves them.
    """
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    author_id = Column(String(64), nullable=False, index=True)
    post_type = Column(String(20), default="text", nullable=False)  # text, picture, video, poll
    visibility = Column(String(20), default=PostVisibility.PUBLIC.value, nullable=False, index=True)
    like_count = Column(Integer, default=0, nullable=False)
    vote_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_visible(self) -> bool:
        return self.visibility == PostVisibility.PUBLIC.value

    def __repr__(self):
        return f"<Post(id={self.id}, visibility={self.visibility}, likes={self.like_count})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "post_type": self.post_type,
            "visibility": self.visibility,
            "like_count": self.like_count,
            "vote_count": self.vote_count,
        }


class EngagementApplied(Base):
    """
    Marker that an (event type, target, actor) triple has been counted

    Counters are only incremented when this row is newly inserted, which makes
    a re-applied flush harmless.
    """
    __tablename__ = "engagement_applied"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(10), nullable=False)
    target_id = Column(String(36), nullable=False, index=True)
    actor_id = Column(String(64), nullable=False)
    applied_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_type", "target_id", "actor_id", name="uq_engagement_applied_key"),
    )
