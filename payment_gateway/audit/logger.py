"""
Immutable audit trail for payment callbacks.

Every callback that reaches the gateway gets an append-only entry with:
  - Order ID (the vnp_TxnRef it claims, even if no such order exists)
  - Action (what happened)
  - Details (raw callback fields, outcome, reason)
  - Timestamp (UTC)

The raw callback fields are recorded as received. The merchant secret and
the canonical signing string are never part of an entry.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payment_gateway.models.order import AuditLog

logger = logging.getLogger("payment_gateway.audit")


async def log_event(
    session: AsyncSession,
    action: str,
    order_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session. The caller owns the commit.
        action: What happened (e.g. "callback_applied", "signature_rejected").
        order_id: The order this event relates to.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        order_id=order_id,
        action=action,
        details=json.dumps(details, ensure_ascii=False) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | order=%s action=%s | %s",
        order_id or "-",
        action,
        json.dumps(details, ensure_ascii=False)[:300] if details else "",
    )
    return entry


def append_note(existing_notes: Optional[str], message: str) -> str:
    """Append a timestamped line to an order's running notes."""
    prefix = f"[{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}] "
    new_note = prefix + message
    if not existing_notes:
        return new_note
    return f"{existing_notes}\n{new_note}"
