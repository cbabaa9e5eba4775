"""
shared/utils/audit.py
Best-effort admin audit trail.

Entries are written in their own session after the admin mutation has been
committed. A failed write is logged and swallowed; it never rolls back or
blocks the action it describes.
"""

import logging
import uuid
from typing import Optional

from fastapi import Request

from config import database
from shared.models.models import AdminAuditLog

logger = logging.getLogger(__name__)


async def log_admin_action(
    admin_id: uuid.UUID,
    action_type: str,
    entity_type: str,
    entity_id,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> bool:
    """Append an entry to admin_audit_log. Returns False if the write failed."""
    try:
        async with database.AsyncSessionLocal() as session:
            session.add(AdminAuditLog(
                admin_id=admin_id,
                action_type=action_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                metadata_=metadata or {},
                ip_address=request.client.host if request and request.client else None,
            ))
            await session.commit()
        return True
    except Exception:
        logger.exception(
            "Audit log write failed: %s %s/%s by %s", action_type, entity_type, entity_id, admin_id
        )
        return False
