from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base
from app.billing.timeutils import now_utc


class ProcessedPayment(Base):
    __tablename__ = "processed_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_ref = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    plan_id = Column(String(20), nullable=False)
    processed_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
