"""PII masking for log lines."""


def redact_pii(value: str | None) -> str:
    """Mask PII for log lines, keeping the first 3 and last 2 characters."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]
