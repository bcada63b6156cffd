# app/billing/ledger.py
"""
Quota accounting for image generation.

``imagesGenerated`` is the only stored counter; remaining quota is always
derived as ``images_limit - images_generated``. Reservation and refund are
single conditional UPDATE statements so that concurrent submissions for the
same user are serialized by the database rather than by a read-modify-write
in Python.
"""
import logging
import uuid
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.billing.plans import get_plan
from app.billing.timeutils import now_utc
from app.errors import NoActiveSubscription, NotFound, QuotaExceeded
from app.models.payment import ProcessedPayment
from app.models.subscription import Subscription
from app.models.user import User

logger = logging.getLogger(__name__)

ADMIN_PAYMENT_PREFIX = "admin-added"


class SubscriptionLedger:
    """Operates within the caller's session; the caller owns commit/rollback."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active(self, user_id: int) -> Optional[Subscription]:
        subscription = self.get(user_id)
        if subscription is None or not subscription.active:
            return None
        return subscription

    def can_generate(self, user_id: int) -> bool:
        subscription = self.get_active(user_id)
        return subscription is not None and subscription.images_generated < subscription.images_limit

    def is_payment_processed(self, payment_ref: str) -> bool:
        stmt = select(ProcessedPayment.id).where(ProcessedPayment.payment_ref == payment_ref)
        return self.db.execute(stmt).first() is not None

    def activate(
        self,
        user_id: int,
        plan_id: str,
        payment_ref: str,
        event_type: str = "payment.captured",
    ) -> Tuple[Subscription, bool]:
        """
        Upsert the user's subscription from a verified payment.

        Returns ``(subscription, activated)``. A payment reference that has
        already been applied is a no-op and returns ``activated=False``.
        """
        plan = get_plan(plan_id)

        if self.is_payment_processed(payment_ref):
            logger.info(f"Payment {payment_ref} already applied, skipping activation")
            return self.get(user_id), False

        self.db.add(ProcessedPayment(
            payment_ref=payment_ref,
            event_type=event_type,
            user_id=user_id,
            plan_id=plan.id,
        ))
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent delivery of the same payment
            self.db.rollback()
            logger.info(f"Payment {payment_ref} recorded concurrently, skipping activation")
            return self.get(user_id), False

        subscription = self.get(user_id)
        if subscription is None:
            subscription = Subscription(user_id=user_id)
            self.db.add(subscription)

        subscription.plan_id = plan.id
        subscription.images_limit = plan.images_limit
        subscription.images_generated = 0
        subscription.active = True
        subscription.payment_ref = payment_ref
        subscription.started_at = now_utc()
        self.db.flush()

        logger.info(f"Activated {plan.id} subscription for user {user_id} ({payment_ref})")
        return subscription, True

    def grant(self, user_id: int, plan_id: str, additional_images: int = 0) -> Subscription:
        """Admin action: create or re-activate a subscription without a payment."""
        plan = get_plan(plan_id)
        if self.db.get(User, user_id) is None:
            raise NotFound("User not found", details={"user_id": user_id})

        subscription = self.get(user_id)
        if subscription is None:
            subscription = Subscription(
                user_id=user_id,
                images_limit=plan.images_limit + additional_images,
                images_generated=0,
                payment_ref=f"{ADMIN_PAYMENT_PREFIX}-{uuid.uuid4().hex[:12]}",
                started_at=now_utc(),
            )
            self.db.add(subscription)
        elif additional_images:
            subscription.images_limit += additional_images
        else:
            subscription.images_limit = plan.images_limit

        subscription.plan_id = plan.id
        subscription.active = True
        if subscription.images_generated > subscription.images_limit:
            subscription.images_generated = subscription.images_limit
        self.db.flush()

        logger.info(f"Admin granted {plan.id} to user {user_id} (limit {subscription.images_limit})")
        return subscription

    def consume(self, user_id: int) -> int:
        """Reserve one unit of quota. Returns the remaining count."""
        stmt = (
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.active.is_(True),
                Subscription.images_generated < Subscription.images_limit,
            )
            .values(images_generated=Subscription.images_generated + 1, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            if self.get_active(user_id) is None:
                raise NoActiveSubscription(
                    "No active subscription found. Please purchase a plan to generate images."
                )
            raise QuotaExceeded(
                "You have used all your image generations. Please upgrade your plan."
            )

        subscription = self.get(user_id)
        return subscription.images_limit - subscription.images_generated

    def refund(self, user_id: int, payment_ref: Optional[str] = None) -> bool:
        """
        Release one reserved unit, floored at zero.

        When ``payment_ref`` is given the refund only applies while that
        payment's subscription is still the current one.
        """
        conditions = [Subscription.user_id == user_id, Subscription.images_generated > 0]
        if payment_ref is not None:
            conditions.append(Subscription.payment_ref == payment_ref)
        stmt = (
            update(Subscription)
            .where(*conditions)
            .values(images_generated=Subscription.images_generated - 1, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        refunded = self.db.execute(stmt).rowcount == 1
        if not refunded:
            logger.warning(f"No refund applied for user {user_id} (payment {payment_ref})")
        return refunded
