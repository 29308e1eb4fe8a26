"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("booker.config")


class Settings(BaseSettings):
    # "memory" keeps bookings in process; "http" talks to the booking API
    booking_backend: str = "memory"

    # Booking API (creation calls, availability, verification)
    api_base_url: str = "http://localhost:3000/api"
    api_timeout_seconds: float = 15.0

    # Where redirects and payment links are rooted
    webapp_url: str = ""

    # Instant bookings
    instant_poll_interval_seconds: float = 2.0
    instant_token_ttl_seconds: int = 90

    # Session defaults
    default_time_zone: str = "UTC"
    default_locale: str = "en"

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if self.booking_backend not in ("memory", "http"):
            raise ValueError(
                f"BOOKING_BACKEND must be 'memory' or 'http', got {self.booking_backend!r}."
            )
        if self.instant_poll_interval_seconds <= 0:
            raise ValueError(
                "INSTANT_POLL_INTERVAL_SECONDS must be positive, "
                f"got {self.instant_poll_interval_seconds}."
            )
        if self.instant_token_ttl_seconds <= 0:
            raise ValueError(
                "INSTANT_TOKEN_TTL_SECONDS must be positive, "
                f"got {self.instant_token_ttl_seconds}."
            )

        if self.instant_poll_interval_seconds >= self.instant_token_ttl_seconds:
            warnings.append(
                "INSTANT_POLL_INTERVAL_SECONDS is not shorter than the instant token TTL; "
                "instant bookings will be polled at most once."
            )

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if not self.webapp_url:
            warnings.append(
                "WEBAPP_URL not set. Success redirects and payment links will be relative."
            )

        return warnings


settings = Settings()
