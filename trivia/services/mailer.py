from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Mailer(Protocol):
    async def send_verification(self, *, user_id: int, email: str, token: str) -> None:
        ...


class LoggingMailer:
    """Mailer used until an email provider is wired in; logs what would be sent."""

    async def send_verification(self, *, user_id: int, email: str, token: str) -> None:
        logger.info("verification email", user_id=user_id, email=email)
