"""
auth/notify.py -- Notification collaborator used by the recovery flows.

The core never delivers email itself. After a recovery token is committed it
calls Notifier.send(purpose, email, payload) once; payload carries the
plaintext secret, the owning user_id and the absolute expiry. Delivery is
fire-and-forget from the core's point of view: a failure is logged by the
caller and the stored token stays valid (the user can ask again).

LoggingNotifier is the default for local runs. It records that a delivery
would have happened and deliberately omits the secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from auth.models import Purpose

logger = logging.getLogger("authcore.auth.notify")


@dataclass(frozen=True)
class RecoveryPayload:
    user_id: int
    secret: str
    expires_at: datetime


class Notifier(Protocol):
    def send(self, purpose: Purpose, email: str, payload: RecoveryPayload) -> None: ...


class LoggingNotifier:
    def send(self, purpose: Purpose, email: str, payload: RecoveryPayload) -> None:
        logger.info(
            "Would deliver %s message for user_id=%s (expires %s)",
            purpose.value,
            payload.user_id,
            payload.expires_at.isoformat(),
        )
