"""
Audit logging service for authentication events and ledger mutations.

Provides one place that writes AuditLog rows so every endpoint records
the same shape of event.
"""

from decimal import Decimal
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    USER_CREATED = "USER_CREATED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"

    # Party registry
    PARTY_CREATED = "PARTY_CREATED"
    PARTY_UPDATED = "PARTY_UPDATED"
    PARTY_RENAMED = "PARTY_RENAMED"
    PARTY_DELETED = "PARTY_DELETED"

    # Ledger entries
    ENTRY_CREATED = "ENTRY_CREATED"
    ENTRY_UPDATED = "ENTRY_UPDATED"
    ENTRY_DELETED = "ENTRY_DELETED"

    # Settlement engine
    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"
    SETTLEMENT_REVERSED = "SETTLEMENT_REVERSED"

    # Commission transactions
    COMMISSION_CREATED = "COMMISSION_CREATED"
    COMMISSION_CANCELLED = "COMMISSION_CANCELLED"

    # Maintenance
    BALANCES_RECALCULATED = "BALANCES_RECALCULATED"
    ENTRIES_RECLASSIFIED = "ENTRIES_RECLASSIFIED"
    COMPANY_RENAMED = "COMPANY_RENAMED"


def _jsonable(value: Any) -> Any:
    """Decimals and dates are stored as strings in the JSON column."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Username of actor
        target_type: "party", "entry", "settlement" ...
        target_id: ID of the affected row
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_data=_jsonable(metadata) if metadata is not None else None,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def log_auth_event(
    db: AsyncSession,
    action: str,
    user_id: Optional[int],
    username: Optional[str],
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an authentication event (register, login success/failure)."""
    return await log_event(
        db=db,
        action=action,
        actor_id=user_id,
        actor_username=username,
        target_type="user",
        target_id=user_id,
        ip_address=ip_address,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    actor_id: int,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve a user's audit trail, most recent first.

    Args:
        db: Database session
        actor_id: User whose actions to list
        action: Filter by action type
        limit: Maximum number of records to return
    """
    query = select(AuditLog).where(AuditLog.actor_id == actor_id).order_by(
        desc(AuditLog.timestamp), desc(AuditLog.id)
    )

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return result.scalars().all()
