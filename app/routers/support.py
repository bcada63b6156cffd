from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.auth.security import get_current_user, require_admin
from app.database import get_db
from app.models.schemas import TicketCreate, TicketOut, TicketReply
from app.models.user import User
from app.rate_limit import SUPPORT_RATE_LIMIT, limiter
from app.services.container import Services, get_services
from app.services.support_service import SupportDesk

router = APIRouter(prefix="/api/support", tags=["Support"])


def get_desk(db: Session = Depends(get_db), services: Services = Depends(get_services)) -> SupportDesk:
    return SupportDesk(db, notifier=services.notifier)


@router.post("/tickets", response_model=TicketOut, status_code=201)
@limiter.limit(SUPPORT_RATE_LIMIT)
def create_ticket(
    request: Request,
    payload: TicketCreate,
    current_user: User = Depends(get_current_user),
    desk: SupportDesk = Depends(get_desk),
):
    return desk.open_ticket(current_user, payload.subject, payload.message)


@router.get("/tickets", response_model=List[TicketOut])
def list_tickets(current_user: User = Depends(get_current_user), desk: SupportDesk = Depends(get_desk)):
    return desk.list_for_user(current_user)


@router.get("/tickets/{ticket_id}", response_model=TicketOut)
def get_ticket(ticket_id: int, current_user: User = Depends(get_current_user), desk: SupportDesk = Depends(get_desk)):
    return desk.get(ticket_id, current_user)


@router.post("/tickets/{ticket_id}/messages", response_model=TicketOut)
def add_message(
    ticket_id: int,
    payload: TicketReply,
    current_user: User = Depends(get_current_user),
    desk: SupportDesk = Depends(get_desk),
):
    return desk.add_message(ticket_id, current_user, payload.message)


@router.put("/tickets/{ticket_id}/close", response_model=TicketOut)
def close_ticket(ticket_id: int, current_user: User = Depends(get_current_user), desk: SupportDesk = Depends(get_desk)):
    return desk.close(ticket_id, current_user)


@router.get("/admin/tickets", response_model=List[TicketOut])
def admin_list_tickets(
    status: Optional[str] = Query(None),
    admin_user: User = Depends(require_admin),
    desk: SupportDesk = Depends(get_desk),
):
    return desk.list_all(status)
