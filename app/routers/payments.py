import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.auth.security import get_current_user, require_admin
from app.billing.ledger import SubscriptionLedger
from app.billing.plans import PLANS, get_plan
from app.database import get_db
from app.errors import InvalidInput, InvalidSignature, NotFound
from app.models.schemas import (
    AdminAddSubscription,
    CreateSession,
    SubscriptionOut,
    SubscriptionPage,
    WebhookAck,
)
from app.models.subscription import Subscription
from app.models.user import User
from app.services.container import Services, get_services
from app.services.payment_service import VerifiedEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.get("/plans")
def list_plans():
    return {"success": True, "data": [plan.to_dict() for plan in PLANS.values()]}


@router.post("/create-session")
def create_session(
    payload: CreateSession,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    session = services.payments.create_session(current_user.id, payload.plan_id)
    logger.info(f"Payment session {session['id']} created for user {current_user.id} ({payload.plan_id})")
    return {"success": True, "data": session}


@router.get("/subscription", response_model=SubscriptionOut)
def get_subscription(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    subscription = SubscriptionLedger(db).get_active(current_user.id)
    if subscription is None:
        raise NotFound("No active subscription found")
    return subscription


@router.get("/can-generate")
def can_generate(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ledger = SubscriptionLedger(db)
    subscription = ledger.get_active(current_user.id)
    return {
        "can_generate": ledger.can_generate(current_user.id),
        "images_remaining": subscription.images_remaining if subscription else 0,
        "plan_id": subscription.plan_id if subscription else None,
    }


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    raw = await request.body()
    try:
        event = services.payments.verify_webhook(raw, x_razorpay_signature)
    except InvalidSignature as e:
        logger.warning(f"Webhook rejected: {e.message}")
        raise

    if not event.is_capture:
        logger.info(f"Webhook event {event.event_type} ignored")
        return WebhookAck(status="ignored", details={"event": event.event_type})
    return await run_in_threadpool(_handle_payment_captured, db, event, services)


def _handle_payment_captured(db: Session, event: VerifiedEvent, services: Services) -> WebhookAck:
    if not event.payment_id or event.user_id is None or not event.plan_id:
        raise InvalidInput("Webhook payload is missing payment id, user id or plan id")
    plan = get_plan(event.plan_id)
    user = db.get(User, event.user_id)
    if user is None:
        raise NotFound("User not found", details={"user_id": event.user_id})

    subscription, activated = SubscriptionLedger(db).activate(
        user.id, plan.id, event.payment_id, event_type=event.event_type
    )
    db.commit()
    if not activated:
        logger.info(f"Webhook duplicate for payment {event.payment_id}")
        return WebhookAck(status="duplicate", details={"payment_id": event.payment_id})

    logger.info(f"Webhook activated {plan.id} for user {user.id} ({event.payment_id})")
    services.notifier.send_subscription_confirmation(user, plan.name, plan.images_limit)
    return WebhookAck(
        status="activated",
        details={"payment_id": event.payment_id, "plan_id": plan.id, "images_limit": subscription.images_limit},
    )


@router.get("/admin/subscriptions", response_model=SubscriptionPage)
def admin_list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    total = db.execute(select(func.count(Subscription.id))).scalar_one()
    subscriptions = list(db.execute(
        select(Subscription)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars())
    return {
        "count": len(subscriptions),
        "pagination": {
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
            "total": total,
        },
        "data": subscriptions,
    }


@router.post("/admin/add-subscription", response_model=SubscriptionOut)
def admin_add_subscription(
    payload: AdminAddSubscription,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionLedger(db).grant(payload.user_id, payload.plan_id, payload.additional_images)
    db.commit()
    db.refresh(subscription)
    logger.info(f"Admin {admin_user.id} added {payload.plan_id} subscription for user {payload.user_id}")
    return subscription
