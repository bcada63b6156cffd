# app/models/__init__.py
from app.database import Base
from .user import User, Role
from .subscription import Subscription
from .payment import ProcessedPayment
from .image import ImageJob, JobStatus
from .support import SupportTicket, TicketMessage, TicketStatus, MessageSender

__all__ = [
    'Base', 'User', 'Role', 'Subscription', 'ProcessedPayment', 'ImageJob', 'JobStatus',
    'SupportTicket', 'TicketMessage', 'TicketStatus', 'MessageSender',
]
