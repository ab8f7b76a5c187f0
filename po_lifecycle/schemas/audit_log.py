from typing import List, Optional
from pydantic import BaseModel

from po_lifecycle.models.audit_log import AuditLog
from po_lifecycle.schemas.common import iso


class AuditEntryResponse(BaseModel):
    id: str
    actor_id: Optional[str] = None
    action: str
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changed_fields: Optional[List[str]] = None
    request_id: Optional[str] = None
    created_at: str

    @classmethod
    def from_model(cls, entry: AuditLog) -> "AuditEntryResponse":
        return cls(
            id=str(entry.id),
            actor_id=entry.actor_id,
            action=entry.action,
            before_state=entry.before_state,
            after_state=entry.after_state,
            changed_fields=entry.changed_fields,
            request_id=entry.request_id,
            created_at=iso(entry.created_at) or "",
        )
