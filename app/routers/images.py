import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from app.auth.security import get_current_user
from app.database import get_db
from app.generation.jobs import JobStore
from app.models.schemas import DeleteResult, ImageJobOut, ImageJobPage
from app.models.user import User
from app.rate_limit import IMAGE_RATE_LIMIT, limiter
from app.services.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["Images"])


@router.post("/generate", response_model=ImageJobOut, status_code=202)
@limiter.limit(IMAGE_RATE_LIMIT)
def generate_image(
    request: Request,
    image: UploadFile = File(...),
    prompt: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Accept an upload and queue the Ghibli transformation"""
    logger.info(
        f"Generate request - User: {current_user.id}, File: {image.filename}, "
        f"Content-Type: {image.content_type}"
    )
    image_bytes = image.file.read()
    return services.orchestrator.submit(
        db,
        current_user,
        image_bytes,
        image.content_type,
        prompt=prompt,
        name=name,
    )


@router.get("", response_model=ImageJobPage)
def list_images(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Own jobs, newest first; admins may pass user_id"""
    jobs, pagination = JobStore(db).list_for_user(
        user_id if user_id is not None else current_user.id,
        current_user,
        page=page,
        limit=limit,
    )
    return {"count": len(jobs), "pagination": pagination, "data": jobs}


@router.get("/{image_id}", response_model=ImageJobOut)
def get_image(
    image_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return JobStore(db).get(image_id, current_user)


@router.delete("/{image_id}", response_model=DeleteResult)
def delete_image(
    image_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Delete the record; asset cleanup failures come back as warnings"""
    job = JobStore(db).delete(image_id, current_user)
    asset_ids = (job.source_public_id, job.result_public_id)
    db.commit()
    warnings = services.orchestrator.delete_assets(*asset_ids)
    logger.info(f"Image {image_id} deleted by user {current_user.id} ({len(warnings)} warning(s))")
    return {"message": "Image deleted successfully", "warnings": warnings}
