from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index

from app.database import Base
from app.billing.timeutils import now_utc


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class ImageJob(Base):
    __tablename__ = 'image_jobs'
    __table_args__ = (Index("ix_image_jobs_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    prompt = Column(String(500), nullable=True)

    source_url = Column(String, nullable=False)
    source_public_id = Column(String, nullable=False)  # Cloudinary ID
    result_url = Column(String, nullable=True)
    result_public_id = Column(String, nullable=True)

    status = Column(String(20), nullable=False, default=JobStatus.PROCESSING.value, index=True)
    # Payment reference of the subscription the reservation was taken from
    subscription_ref = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    processing_started_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
