import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.billing.timeutils import now_utc
from app.errors import Forbidden, InvalidTransition, NotFound
from app.models.image import ImageJob, JobStatus
from app.models.user import User

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def can_view(requester: User, owner_id: int) -> bool:
    return requester.is_admin or requester.id == owner_id


class JobStore:
    """Persistence and visibility rules for image jobs."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: int,
        name: str,
        prompt: Optional[str],
        source_url: str,
        source_public_id: str,
        subscription_ref: Optional[str] = None,
    ) -> ImageJob:
        now = now_utc()
        job = ImageJob(
            user_id=user_id,
            name=name,
            prompt=prompt or None,
            source_url=source_url,
            source_public_id=source_public_id,
            subscription_ref=subscription_ref,
            status=JobStatus.PROCESSING.value,
            created_at=now,
            processing_started_at=now,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def find(self, job_id: int) -> Optional[ImageJob]:
        stmt = select(ImageJob).where(ImageJob.id == job_id).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get(self, job_id: int, requester: User) -> ImageJob:
        job = self.find(job_id)
        if job is None:
            raise NotFound("Image not found", details={"id": job_id})
        if not can_view(requester, job.user_id):
            raise Forbidden("Not authorized to access this image")
        return job

    def list_for_user(
        self, user_id: int, requester: User, page: int = 1, limit: int = 10
    ) -> Tuple[List[ImageJob], dict]:
        if not can_view(requester, user_id):
            raise Forbidden("Not authorized to list these images")
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        total = self.db.execute(
            select(func.count(ImageJob.id)).where(ImageJob.user_id == user_id)
        ).scalar_one()
        stmt = (
            select(ImageJob)
            .where(ImageJob.user_id == user_id)
            .order_by(ImageJob.created_at.desc(), ImageJob.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        jobs = list(self.db.execute(stmt).scalars())
        pagination = {
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
            "total": total,
        }
        return jobs, pagination

    def processing_ids(self, started_before=None) -> List[int]:
        stmt = select(ImageJob.id).where(ImageJob.status == JobStatus.PROCESSING.value)
        if started_before is not None:
            stmt = stmt.where(ImageJob.processing_started_at < started_before)
        return list(self.db.execute(stmt.order_by(ImageJob.id)).scalars())

    def _transition(self, job_id: int, **values) -> ImageJob:
        # Compare-and-set on status: only a job still processing may move
        stmt = (
            update(ImageJob)
            .where(ImageJob.id == job_id, ImageJob.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        job = self.find(job_id)
        if result.rowcount != 1:
            if job is None:
                raise NotFound("Image not found", details={"id": job_id})
            raise InvalidTransition(
                f"Job {job_id} is already {job.status}",
                details={"id": job_id, "status": job.status},
            )
        return job

    def mark_completed(self, job_id: int, result_url: str, result_public_id: Optional[str] = None) -> ImageJob:
        return self._transition(
            job_id,
            status=JobStatus.COMPLETED.value,
            result_url=result_url,
            result_public_id=result_public_id,
            completed_at=now_utc(),
        )

    def mark_failed(self, job_id: int, reason: Optional[str] = None) -> ImageJob:
        return self._transition(
            job_id,
            status=JobStatus.FAILED.value,
            failure_reason=reason,
            completed_at=now_utc(),
        )

    def delete(self, job_id: int, requester: User) -> ImageJob:
        """Remove the record. Asset cleanup is the caller's concern."""
        job = self.get(job_id, requester)
        if job.status == JobStatus.PROCESSING.value:
            raise InvalidTransition(
                "Image is still processing and cannot be deleted yet",
                details={"id": job_id, "status": job.status},
            )
        self.db.delete(job)
        self.db.flush()
        return job
