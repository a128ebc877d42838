"""Shared-secret authentication for operators and the payment collaborator."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


async def require_operator(
    x_operator_key: str | None = Header(default=None),
) -> None:
    """Allow billing runs and invoice reads only with the operator key."""
    expected = get_settings().operator_api_key.get_secret_value()
    if not _matches(x_operator_key, expected):
        log.warning("operator_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operator key",
        )


async def require_payment_collaborator(
    x_payment_secret: str | None = Header(default=None),
) -> None:
    """Accept status callbacks only from the payment collaborator."""
    expected = get_settings().payment_callback_secret.get_secret_value()
    if not _matches(x_payment_secret, expected):
        log.warning("payment_callback_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid payment callback secret",
        )
