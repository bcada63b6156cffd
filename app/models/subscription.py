from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from app.database import Base
from app.billing.timeutils import now_utc


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    plan_id = Column(String(20), nullable=False)

    images_limit = Column(Integer, nullable=False)
    images_generated = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    payment_ref = Column(String(255), nullable=True)
    started_at = Column(DateTime(timezone=True), default=now_utc)

    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=now_utc)

    user = relationship("User", back_populates="subscription")

    @property
    def images_remaining(self) -> int:
        return max(0, self.images_limit - self.images_generated)
