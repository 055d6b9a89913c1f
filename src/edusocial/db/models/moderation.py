"""
Moderation job model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from datetime import datetime
import enum
import uuid

from ..base import Base, JSONType


class ModerationStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_MODERATION_STATUSES = (ModerationStatus.APPROVED.value, ModerationStatus.REJECTED.value)


class ModerationJob(Base):
    """Asynchronous review of a post's media"""
    __tablename__ = "moderation_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    post_id = Column(String(36), ForeignKey("posts.id"), nullable=False, index=True)
    media_url = Column(String(1000), nullable=False)
    submitter_id = Column(String(64), nullable=False, index=True)

    status = Column(String(20), default=ModerationStatus.QUEUED.value, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(String(1000), nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    result = Column(JSONType, nullable=True)  # verdict details from the moderation service
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_moderation_jobs_status_next_attempt", "status", "next_attempt_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MODERATION_STATUSES

    def __repr__(self):
        return f"<ModerationJob(id={self.id}, post={self.post_id}, status={self.status}, attempts={self.attempts})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "media_url": self.media_url,
            "submitter_id": self.submitter_id,
            "status": self.status,
            "attempts": self.attempts,
            "result": self.result,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
