"""Support tickets: append-only message threads with role-driven status changes."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.billing.timeutils import now_utc
from app.errors import Forbidden, InvalidInput, NotFound
from app.generation.jobs import can_view
from app.models.support import MessageSender, SupportTicket, TicketMessage, TicketStatus
from app.models.user import User

logger = logging.getLogger(__name__)


def next_status(current: str, sender: MessageSender) -> str:
    if current == TicketStatus.CLOSED.value:
        return TicketStatus.REOPENED.value
    if sender == MessageSender.ADMIN and current == TicketStatus.OPEN.value:
        return TicketStatus.IN_PROGRESS.value
    return current


class SupportDesk:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier

    def open_ticket(self, user: User, subject: str, message: str) -> SupportTicket:
        subject, message = subject.strip(), message.strip()
        if not subject or not message:
            raise InvalidInput("Please provide subject and message")

        now = now_utc()
        ticket = SupportTicket(
            user_id=user.id,
            subject=subject,
            status=TicketStatus.OPEN.value,
            created_at=now,
            updated_at=now,
        )
        ticket.messages.append(TicketMessage(sender=MessageSender.USER.value, body=message, created_at=now))
        self.db.add(ticket)
        self.db.commit()
        self.db.refresh(ticket)
        logger.info(f"Support ticket {ticket.id} opened by user {user.id}")

        if self.notifier is not None:
            self.notifier.send_ticket_created(user, ticket, message)
        return ticket

    def get(self, ticket_id: int, requester: User) -> SupportTicket:
        ticket = self.db.get(SupportTicket, ticket_id)
        if ticket is None:
            raise NotFound("Ticket not found", details={"id": ticket_id})
        if not can_view(requester, ticket.user_id):
            raise Forbidden("Not authorized to access this ticket")
        return ticket

    def list_for_user(self, user: User) -> List[SupportTicket]:
        stmt = (
            select(SupportTicket)
            .where(SupportTicket.user_id == user.id)
            .order_by(SupportTicket.updated_at.desc(), SupportTicket.id.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def list_all(self, status: Optional[str] = None) -> List[SupportTicket]:
        stmt = select(SupportTicket)
        if status:
            if status not in {s.value for s in TicketStatus}:
                raise InvalidInput(f"Unknown ticket status: {status}")
            stmt = stmt.where(SupportTicket.status == status)
        stmt = stmt.order_by(SupportTicket.updated_at.desc(), SupportTicket.id.desc())
        return list(self.db.execute(stmt).scalars())

    def add_message(self, ticket_id: int, requester: User, message: str) -> SupportTicket:
        message = message.strip()
        if not message:
            raise InvalidInput("Please provide a message")
        ticket = self.get(ticket_id, requester)

        sender = MessageSender.ADMIN if requester.is_admin else MessageSender.USER
        now = now_utc()
        ticket.messages.append(TicketMessage(sender=sender.value, body=message, created_at=now))
        ticket.status = next_status(ticket.status, sender)
        ticket.updated_at = now
        self.db.commit()
        self.db.refresh(ticket)
        logger.info(f"Message added to ticket {ticket.id} by {sender.value}, status {ticket.status}")

        if self.notifier is not None:
            owner = self.db.get(User, ticket.user_id)
            if sender == MessageSender.ADMIN:
                self.notifier.send_ticket_reply(owner, ticket, message)
            else:
                self.notifier.send_ticket_updated(owner, ticket, message)
        return ticket

    def close(self, ticket_id: int, requester: User) -> SupportTicket:
        ticket = self.get(ticket_id, requester)
        ticket.status = TicketStatus.CLOSED.value
        ticket.updated_at = now_utc()
        self.db.commit()
        self.db.refresh(ticket)
        logger.info(f"Ticket {ticket.id} closed by user {requester.id}")
        return ticket
