from fastapi import APIRouter, Depends

from app.billing.timeutils import now_utc
from app.database import check_db_connection
from app.services.container import Services, get_services

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


@router.get("")
def health_check():
    return {
        "status": "healthy",
        "timestamp": now_utc().isoformat(),
        "version": VERSION,
    }


@router.get("/database")
def database_health():
    if check_db_connection():
        return {"status": "healthy", "database": "connected"}
    return {"status": "unhealthy", "database": "disconnected"}


@router.get("/redis")
def redis_health(services: Services = Depends(get_services)):
    if services.token_store.ping():
        return {"status": "healthy", "redis": "connected"}
    return {"status": "unhealthy", "redis": "disconnected"}


@router.get("/cloudinary")
def cloudinary_health(services: Services = Depends(get_services)):
    if services.storage.ping():
        return {"status": "healthy", "cloudinary": "connected"}
    return {"status": "unhealthy", "cloudinary": "disconnected"}
