"""Email notifications (email-queue)."""

from __future__ import annotations

from html import escape
from typing import Any, Dict, Mapping, Optional, Tuple

from workrelay.messaging.models import DeliveryOutcome
from workrelay.utility.logging_client import logger
from workrelay.workers.base import WorkerContext, record

SUBJECTS = {
    "welcome": "Welcome to the platform!",
    "password-reset": "Password reset request",
}
DEFAULT_SUBJECT = "System notification"


def _welcome(data: Mapping[str, Any]) -> str:
    name = escape(str(data.get("userName") or "there"))
    return (
        f"<h1>Welcome, {name}!</h1>"
        "<p>Thanks for signing up. Your account has been created and is ready to use.</p>"
    )


def _password_reset(data: Mapping[str, Any]) -> str:
    link = escape(str(data.get("resetLink") or "#"), quote=True)
    return (
        "<h1>Password reset</h1>"
        "<p>We received a request to reset your password.</p>"
        f'<p><a href="{link}">Reset my password</a></p>'
        "<p>The link is valid for 1 hour.</p>"
    )


def _default(data: Mapping[str, Any]) -> str:
    return "<h1>System notification</h1><p>No detailed template is available for this email.</p>"


TEMPLATES = {
    "welcome": _welcome,
    "password-reset": _password_reset,
}


def render(email_type: Optional[str], data: Mapping[str, Any]) -> Tuple[str, str]:
    """Subject and HTML body; `data.subject` / `data.html` override the template."""
    subject = data.get("subject") or SUBJECTS.get(email_type or "", DEFAULT_SUBJECT)
    html = data.get("html") or TEMPLATES.get(email_type or "", _default)(data)
    return str(subject), str(html)


async def handle_email(payload: Dict[str, Any], ctx: WorkerContext) -> DeliveryOutcome:
    email_type = payload.get("type")
    email = payload.get("email")
    data = payload.get("data") or {}
    action = f"email-{email_type}"
    logger.info(f"Email job started: {email_type}", component="email")

    if not email or not isinstance(data, Mapping):
        await record(
            ctx,
            payload,
            action=action,
            data={"email": email, "type": email_type, "error": "missing recipient or invalid data"},
            ok=False,
        )
        logger.error(f"Email job {action} has no valid recipient", component="email")
        return DeliveryOutcome.FATAL_FAILURE

    subject, html = render(email_type, data)
    try:
        result = await ctx.mail_transport.deliver({"to": email, "subject": subject, "body": html, "html": True})
    except Exception as e:
        await record(
            ctx,
            payload,
            action=action,
            data={"email": email, "type": email_type, "data": dict(data), "error": str(e)},
            ok=False,
        )
        logger.warning(f"Email transport raised for {email}: {e}", component="email")
        return DeliveryOutcome.RETRYABLE_FAILURE

    await record(
        ctx,
        payload,
        action=action,
        data={"email": email, "type": email_type, "data": dict(data), "sendInfo": result.as_dict()},
        ok=result.success,
    )
    if not result.success:
        logger.warning(f"Email to {email} failed: {result.error}", component="email")
        return DeliveryOutcome.RETRYABLE_FAILURE

    logger.info(f"Email job done: {email} ({email_type})", component="email")
    return DeliveryOutcome.SUCCESS
