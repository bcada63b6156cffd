"""Explicitly constructed capability handles shared by the routers and background work."""
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from app.database import SessionLocal
from app.generation.orchestrator import GenerationOrchestrator
from app.generation.scheduler import JobScheduler
from app.services.cloudinary_service import CloudinaryService, GhibliTransformer
from app.services.email_service import EmailNotifier
from app.services.payment_service import RazorpayGateway
from app.services.redis_service import RedisService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    storage: Any
    transformer: Any
    notifier: Any
    payments: Any
    scheduler: Any
    token_store: Any
    orchestrator: Any

    def shutdown(self):
        self.scheduler.shutdown(wait=False)
        close = getattr(self.payments, "close", None)
        if close is not None:
            close()


def build_services(settings, session_factory=None) -> Services:
    storage = CloudinaryService(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        folder=settings.storage_folder,
    )
    transformer = GhibliTransformer(storage, timeout_seconds=settings.transform_timeout_seconds)
    notifier = EmailNotifier(
        api_key=settings.resend_api_key,
        from_email=settings.mail_from,
        from_name=settings.mail_from_name,
        client_url=settings.client_url,
        support_email=settings.support_email,
    )
    payments = RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        webhook_secret=settings.razorpay_webhook_secret,
        callback_url=f"{settings.client_url.rstrip('/')}/dashboard",
    )
    scheduler = JobScheduler(
        delay_seconds=settings.generation_delay_seconds,
        max_workers=settings.worker_threads,
    )
    token_store = RedisService(
        settings.redis_url,
        default_ttl_minutes=settings.access_token_expire_minutes,
    )
    orchestrator = GenerationOrchestrator(
        session_factory=session_factory or SessionLocal,
        storage=storage,
        transformer=transformer,
        notifier=notifier,
        scheduler=scheduler,
        max_upload_bytes=settings.max_upload_bytes,
        processing_timeout_minutes=settings.processing_timeout_minutes,
    )
    logger.info("Service handles constructed")
    return Services(
        storage=storage,
        transformer=transformer,
        notifier=notifier,
        payments=payments,
        scheduler=scheduler,
        token_store=token_store,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
