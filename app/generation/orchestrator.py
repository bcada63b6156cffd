"""
Subscription-gated asynchronous image generation.

``submit`` runs inside the request: validate, check quota, store the source,
reserve a quota unit and create the job, all before returning. The
transformation itself runs later in ``run_job`` on the scheduler's worker
pool, which moves the job to exactly one terminal state. A failed job
releases its reservation in the same transaction that marks it failed, so
the refund happens once and only once.
"""
import logging
import re
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.billing.ledger import SubscriptionLedger
from app.billing.plans import PLANS
from app.billing.timeutils import minutes_ago, now_utc
from app.errors import (
    InvalidInput,
    InvalidTransition,
    NoActiveSubscription,
    NotFound,
    QuotaExceeded,
    UpstreamFailure,
)
from app.generation.jobs import JobStore
from app.models.image import ImageJob
from app.models.user import User

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_NAME_LENGTH = 100
MAX_PROMPT_LENGTH = 500
_PROMPT_STRIP = re.compile(r"[<>{}\[\]\\/]")


def sanitize_prompt(prompt: Optional[str]) -> str:
    if not prompt:
        return ""
    cleaned = _PROMPT_STRIP.sub("", prompt.strip())
    if len(cleaned) > MAX_PROMPT_LENGTH:
        raise InvalidInput(f"Prompt cannot be more than {MAX_PROMPT_LENGTH} characters")
    return cleaned


def normalize_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        return f"Ghibli Art {now_utc().strftime('%Y%m%d%H%M%S')}"
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Name cannot be more than {MAX_NAME_LENGTH} characters")
    return name


class GenerationOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        storage,
        transformer,
        notifier,
        scheduler,
        max_upload_bytes: int = 10 * 1024 * 1024,
        processing_timeout_minutes: int = 30,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.transformer = transformer
        self.notifier = notifier
        self.scheduler = scheduler
        self.max_upload_bytes = max_upload_bytes
        self.processing_timeout_minutes = processing_timeout_minutes

    # ------------------------------------------------------------------
    # Synchronous part (request thread)
    # ------------------------------------------------------------------

    def validate_upload(self, image_bytes: bytes, content_type: Optional[str]):
        if not image_bytes:
            raise InvalidInput("Please upload an image")
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise InvalidInput(
                f"File must be a JPEG, PNG or WebP image. Received: {content_type}",
                details={"allowed": list(ALLOWED_CONTENT_TYPES)},
            )
        if len(image_bytes) > self.max_upload_bytes:
            raise InvalidInput(
                f"File size exceeds the maximum of {self.max_upload_bytes} bytes",
                details={"max_bytes": self.max_upload_bytes, "size": len(image_bytes)},
            )

    def submit(
        self,
        db: Session,
        user: User,
        image_bytes: bytes,
        content_type: Optional[str],
        prompt: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ImageJob:
        self.validate_upload(image_bytes, content_type)
        prompt = sanitize_prompt(prompt)
        name = normalize_name(name)

        ledger = SubscriptionLedger(db)
        subscription = ledger.get_active(user.id)
        if subscription is None:
            raise NoActiveSubscription(
                "No active subscription found. Please purchase a plan to generate images."
            )
        if not ledger.can_generate(user.id):
            raise QuotaExceeded(
                "You have used all your image generations. Please upgrade your plan."
            )
        payment_ref = subscription.payment_ref
        plan_id = subscription.plan_id

        # Storage failure aborts here, before any quota is reserved
        source = self.storage.upload_image(
            image_bytes,
            public_id=f"user_{user.id}_{uuid.uuid4().hex}",
            subfolder="originals",
        )

        try:
            remaining = ledger.consume(user.id)
            job = JobStore(db).create(
                user_id=user.id,
                name=name,
                prompt=prompt,
                source_url=source.url,
                source_public_id=source.public_id,
                subscription_ref=payment_ref,
            )
            db.commit()
        except Exception:
            db.rollback()
            self._discard_asset(source.public_id)
            raise

        logger.info(f"Job {job.id} accepted for user {user.id}, {remaining} image(s) remaining")

        try:
            self.scheduler.schedule(self.run_job, job.id)
        except Exception as e:
            logger.error(f"Failed to dispatch job {job.id}: {e}")
            self.fail_job(job.id, reason="Could not dispatch job")
            db.refresh(job)
            return job

        if remaining == 0:
            plan = PLANS.get(plan_id)
            self.notifier.send_quota_reached(user, plan.name if plan else plan_id)
        return job

    # ------------------------------------------------------------------
    # Background part (worker thread)
    # ------------------------------------------------------------------

    def run_job(self, job_id: int) -> None:
        """Execute the transformation for a job; safe to call more than once."""
        db = self.session_factory()
        try:
            job = JobStore(db).find(job_id)
            if job is None:
                logger.warning(f"Job {job_id} no longer exists, skipping")
                return
            if job.is_terminal:
                logger.info(f"Job {job_id} already {job.status}, skipping")
                return
            source_public_id = job.source_public_id
            prompt = job.prompt
        finally:
            db.close()

        try:
            rendered = self.transformer.transform(source_public_id, prompt)
            result = self.storage.upload_image(
                rendered,
                public_id=f"job_{job_id}_result_{uuid.uuid4().hex[:12]}",
                subfolder="generated",
                **self._render_options(prompt),
            )
        except Exception as e:
            logger.error(f"Image processing failed for job {job_id}: {e}")
            self.fail_job(job_id, reason=str(e))
            return

        self.complete_job(job_id, result)

    def complete_job(self, job_id: int, result) -> bool:
        db = self.session_factory()
        try:
            try:
                job = JobStore(db).mark_completed(job_id, result.url, result.public_id)
            except (InvalidTransition, NotFound) as e:
                db.rollback()
                current = JobStore(db).find(job_id)
                if current is not None and current.result_public_id == result.public_id:
                    logger.info(f"Job {job_id} already completed with this result")
                    return False
                logger.warning(f"Discarding result for job {job_id}: {e.message}")
                self._discard_asset(result.public_id)
                return False
            db.commit()
            logger.info(f"Job {job_id} completed")

            user = db.get(User, job.user_id)
            if user is not None:
                self.notifier.send_image_completed(user, job)
            return True
        finally:
            db.close()

    def fail_job(self, job_id: int, reason: Optional[str] = None) -> bool:
        """Mark a job failed and release its reservation. Returns False if it was already terminal."""
        db = self.session_factory()
        try:
            try:
                job = JobStore(db).mark_failed(job_id, reason)
            except (InvalidTransition, NotFound) as e:
                db.rollback()
                logger.info(f"Not failing job {job_id}: {e.message}")
                return False
            SubscriptionLedger(db).refund(job.user_id, payment_ref=job.subscription_ref)
            db.commit()
            logger.info(f"Job {job_id} failed and quota refunded for user {job.user_id}")

            user = db.get(User, job.user_id)
            if user is not None:
                self.notifier.send_image_failed(user, job)
            return True
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reap_stale_jobs(self, current_utc=None) -> int:
        """Fail jobs that have been processing longer than the timeout."""
        cutoff = minutes_ago(self.processing_timeout_minutes, current_utc)
        db = self.session_factory()
        try:
            stale_ids = JobStore(db).processing_ids(started_before=cutoff)
        finally:
            db.close()

        reaped = 0
        for job_id in stale_ids:
            if self.fail_job(job_id, reason="Processing timed out"):
                reaped += 1
        if reaped:
            logger.warning(f"Reaped {reaped} stale job(s)")
        return reaped

    def recover(self) -> dict:
        """Startup pass: fail what is past the deadline, re-dispatch the rest."""
        reaped = self.reap_stale_jobs()
        db = self.session_factory()
        try:
            pending_ids = JobStore(db).processing_ids()
        finally:
            db.close()

        for job_id in pending_ids:
            self.scheduler.schedule(self.run_job, job_id)
        if reaped or pending_ids:
            logger.info(f"Recovery: {reaped} reaped, {len(pending_ids)} re-dispatched")
        return {"reaped": reaped, "requeued": len(pending_ids)}

    def delete_assets(self, *public_ids: Optional[str]) -> list:
        """Best-effort asset removal; returns warnings for anything left behind."""
        warnings = []
        for public_id in public_ids:
            if not public_id:
                continue
            try:
                self.storage.destroy_image(public_id)
            except UpstreamFailure as e:
                logger.error(f"Failed to delete asset {public_id}: {e.message}")
                warnings.append(f"Stored asset {public_id} could not be deleted")
        return warnings

    def _discard_asset(self, public_id: str):
        try:
            self.storage.destroy_image(public_id)
        except UpstreamFailure as e:
            logger.error(f"Failed to clean up asset {public_id}: {e.message}")

    def _render_options(self, prompt: Optional[str]) -> dict:
        render_options = getattr(self.transformer, "render_options", None)
        return render_options(prompt) if render_options else {}
