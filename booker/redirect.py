"""Success redirects and payment hand-off links."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from booker.config import settings
from booker.models.booking import PaymentHandoff, RedirectInstruction


def _absolute(path: str, webapp_url: str | None) -> str:
    base = (settings.webapp_url if webapp_url is None else webapp_url).rstrip("/")
    return f"{base}{path}" if base else path


def format_former_time(start: datetime) -> str:
    """Render a prior booking's start the way the success page parses it."""
    return format_datetime(start.astimezone(timezone.utc), usegmt=True)


def resolve_success_redirect(instruction: RedirectInstruction, webapp_url: str | None = None) -> str:
    """URL to send the booker to after a successful booking.

    An event with its own success URL gets the success query forwarded onto
    that URL (unless forwarding is disabled); otherwise the booker lands on
    the booking's own success page.
    """
    params = instruction.query.to_params()

    if instruction.success_redirect_url:
        if not instruction.forward_params:
            return instruction.success_redirect_url
        parts = urlsplit(instruction.success_redirect_url)
        merged = dict(parse_qsl(parts.query, keep_blank_values=True))
        merged.update(params)
        return urlunsplit(parts._replace(query=urlencode(merged)))

    return _absolute(f"/booking/{instruction.booking_uid}?{urlencode(params)}", webapp_url)


def create_payment_link(handoff: PaymentHandoff, absolute: bool = False) -> str:
    """Link to the payment page of a booking that requires payment."""
    query = urlencode(
        {
            "date": handoff.date.astimezone(timezone.utc).isoformat(),
            "name": handoff.name,
            "email": handoff.email,
        }
    )
    path = f"/payment/{handoff.payment_uid}?{query}"
    return _absolute(path, None) if absolute else path
