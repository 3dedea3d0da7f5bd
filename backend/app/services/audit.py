"""Audit logging service."""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.models.enums import AuditAction


class AuditService:
    """Service for creating audit log entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        user_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        entry = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def log_request_action(
        self,
        action: AuditAction,
        request_id: UUID,
        user_id: UUID,
        role: str,
        **details: Any,
    ) -> AuditLog:
        """Log a maintenance lifecycle action taken by ``user_id``."""
        return await self.log(
            action=action,
            resource_type="maintenance_request",
            resource_id=request_id,
            user_id=user_id,
            details={
                "role": role,
                **{k: (str(v) if v is not None and not isinstance(v, (int, bool, str)) else v)
                   for k, v in details.items()},
            },
        )
