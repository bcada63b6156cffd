"""Transactional email: job outcomes, subscription and account events, support traffic."""
import logging
from pathlib import Path
from typing import Optional

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)

SITE_NAME = "Artify Ghibli"
TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "email"


class EmailNotifier:
    """
    Best-effort notification dispatcher.

    Every ``send_*`` method returns ``True`` on success and ``False`` on any
    delivery failure; failures are logged and never raised, so callers can
    notify after committing state without risking a rollback.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = SITE_NAME,
        client_url: str = "",
        support_email: str = "",
        template_dir: Path = TEMPLATE_DIR,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.client_url = client_url.rstrip("/")
        self.support_email = support_email
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.from_email)

    def render(self, template_name: str, **context) -> str:
        template = self.jinja_env.get_template(template_name)
        return template.render(site_name=SITE_NAME, client_url=self.client_url, **context)

    def _send(self, to_email: Optional[str], subject: str, template_name: str, /, **context) -> bool:
        if not to_email:
            logger.warning(f"Skipping email '{subject}': no recipient")
            return False
        if not self.enabled:
            logger.warning(f"Email delivery disabled, not sending '{subject}' to {to_email}")
            return False
        try:
            html = self.render(template_name, **context)
            resend.api_key = self.api_key
            resend.Emails.send({
                "from": f"{self.from_name} <{self.from_email}>",
                "to": [to_email],
                "subject": subject,
                "html": html,
            })
            logger.info(f"Email sent: to={to_email}, subject={subject}")
            return True
        except Exception as e:
            logger.error(f"Email send failed: to={to_email}, subject={subject} - {e}")
            return False

    # Account

    def send_welcome(self, user) -> bool:
        return self._send(user.email, f"Welcome to {SITE_NAME}!", "welcome.html", name=user.name)

    def send_password_reset(self, user, reset_url: str, expires_minutes: int) -> bool:
        return self._send(
            user.email,
            f"{SITE_NAME} password reset",
            "password_reset.html",
            name=user.name,
            reset_url=reset_url,
            expires_minutes=expires_minutes,
        )

    # Subscription

    def send_subscription_confirmation(self, user, plan_name: str, images_limit: int) -> bool:
        return self._send(
            user.email,
            f"Your {SITE_NAME} Subscription is Active!",
            "subscription_confirmation.html",
            name=user.name,
            plan_name=plan_name,
            images_limit=images_limit,
        )

    def send_quota_reached(self, user, plan_name: str) -> bool:
        return self._send(
            user.email,
            "You've used all your image generations",
            "quota_reached.html",
            name=user.name,
            plan_name=plan_name,
        )

    # Image jobs

    def send_image_completed(self, user, job) -> bool:
        return self._send(
            user.email,
            "Your Ghibli-style image is ready!",
            "image_completed.html",
            name=user.name,
            image_name=job.name,
            image_url=job.result_url,
        )

    def send_image_failed(self, user, job) -> bool:
        return self._send(
            user.email,
            "Image generation failed",
            "image_failed.html",
            name=user.name,
            image_name=job.name,
        )

    # Support

    def send_ticket_created(self, user, ticket, message: str) -> bool:
        return self._send(
            self.support_email,
            f"New support ticket: {ticket.subject}",
            "ticket_created.html",
            user_name=user.name,
            user_email=user.email,
            subject=ticket.subject,
            message=message,
            ticket_id=ticket.id,
        )

    def send_ticket_updated(self, user, ticket, message: str) -> bool:
        return self._send(
            self.support_email,
            f"Support ticket updated: {ticket.subject}",
            "ticket_updated.html",
            user_name=user.name,
            user_email=user.email,
            subject=ticket.subject,
            message=message,
            ticket_id=ticket.id,
        )

    def send_ticket_reply(self, user, ticket, message: str) -> bool:
        return self._send(
            user.email,
            f"New reply to your support ticket: {ticket.subject}",
            "ticket_reply.html",
            name=user.name,
            subject=ticket.subject,
            message=message,
            ticket_id=ticket.id,
        )
