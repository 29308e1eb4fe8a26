"""Email verification gate in front of the booking commit.

Events that require a verified booker email cannot be booked until the
booker proves they own the address. The gate either lets a submission
straight through or opens a code challenge; the booking is committed only
after a correct code::

    submit()  --verified/not required-->  commit
       |
       +--> send code, open modal --confirm(code) ok--> mark verified, close, commit
                                    --wrong code--> error, modal stays open
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from booker.backends.base import VerificationProvider
from booker.errors import (
    ERROR_FIELD_REQUIRED,
    ERROR_SOMETHING_WENT_WRONG,
    ERROR_VERIFICATION_CODE_INVALID,
    VerificationError,
)
from booker.forms.fields import get_full_name
from booker.models.event_type import EventType
from booker.models.session_state import BookerState, BookingForm
from booker.privacy import redact_pii
from booker.surface import BookerSurface

log = logging.getLogger("booker.verification")


class GateStatus(str, Enum):
    COMMITTED = "committed"        # booking handed to the orchestrator
    CHALLENGED = "challenged"      # code sent, waiting for confirm()
    BLOCKED = "blocked"            # precondition failed, nothing sent
    REJECTED = "rejected"          # wrong code, modal still open


@dataclass
class GateResult:
    status: GateStatus
    outcome: Any = None
    error: Optional[str] = None


class EmailVerificationGate:
    """Guards one session's booking commit behind email verification."""

    def __init__(
        self,
        provider: VerificationProvider,
        state: BookerState,
        form: BookingForm,
        surface: BookerSurface,
        commit: Callable[[], Awaitable[Any]],
        before_verify: Callable[[], bool],
        validate: Callable[[], Awaitable[bool]] | None = None,
        emit: Optional[Callable[[str, dict], None]] = None,
    ) -> None:
        self._provider = provider
        self._state = state
        self._form = form
        self._surface = surface
        self._commit = commit
        self._before_verify = before_verify
        self._validate = validate
        self._emit = emit

        self._modal_open = False
        self._email: str | None = None
        self.error: str | None = None

    @property
    def is_modal_open(self) -> bool:
        return self._modal_open

    @property
    def pending_email(self) -> str | None:
        return self._email

    def can_commit_directly(self, event_type: EventType | None) -> bool:
        """True when no challenge is needed for the form's current email."""
        if event_type is None or not event_type.requires_booker_email_verification:
            return True
        email = self._form.get("email")
        return bool(email) and self._state.verified_email == email

    async def submit(self, event_type: EventType | None) -> GateResult:
        """Commit the booking, or open a verification challenge first."""
        if self.can_commit_directly(event_type):
            return GateResult(GateStatus.COMMITTED, outcome=await self._commit())

        if self._validate is not None and not await self._validate():
            return GateResult(GateStatus.BLOCKED)
        if not self._before_verify():
            return GateResult(GateStatus.BLOCKED, error=self._form.global_error)

        email = self._form.get("email")
        if not email:
            self._form.set_field_errors({"email": ERROR_FIELD_REQUIRED})
            return GateResult(GateStatus.BLOCKED, error=ERROR_FIELD_REQUIRED)

        try:
            await self._provider.send_code(email, get_full_name(self._form.get("name")))
        except VerificationError:
            log.exception("Could not send verification code to %s", redact_pii(email))
            self._surface.show_toast(ERROR_SOMETHING_WENT_WRONG, "error")
            return GateResult(GateStatus.BLOCKED, error=ERROR_SOMETHING_WENT_WRONG)

        self._email = email
        self._modal_open = True
        self.error = None
        self._trace("challenge_opened", {"email": redact_pii(email)})
        return GateResult(GateStatus.CHALLENGED)

    async def confirm(self, code: str) -> GateResult:
        """Check ``code``; on success mark the email verified and commit."""
        if not self._modal_open or not self._email:
            log.warning("Verification code submitted with no open challenge")
            return GateResult(GateStatus.BLOCKED)

        try:
            verified = await self._provider.verify_code(self._email, code)
        except VerificationError:
            log.exception("Verification check failed for %s", redact_pii(self._email))
            verified = False

        if not verified:
            self.error = ERROR_VERIFICATION_CODE_INVALID
            self._trace("code_rejected", {})
            return GateResult(GateStatus.REJECTED, error=self.error)

        self._state.set_verified_email(self._email)
        self._trace("code_accepted", {})
        self.close()
        return GateResult(GateStatus.COMMITTED, outcome=await self._commit())

    def close(self) -> None:
        self._modal_open = False
        self._email = None
        self.error = None

    def to_dict(self) -> dict:
        return {
            "modal_open": self._modal_open,
            "pending_email": redact_pii(self._email) if self._email else None,
            "error": self.error,
        }

    def _trace(self, kind: str, data: dict) -> None:
        if self._emit:
            self._emit("verification", {"event": kind, **data})
