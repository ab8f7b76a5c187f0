from typing import Optional
from pydantic import BaseModel, Field

from po_lifecycle.models.approval import Approval
from po_lifecycle.schemas.common import iso


class ApprovalResponse(BaseModel):
    id: str
    po_id: str
    approver_id: str
    status: str
    comment: Optional[str] = None
    signature_ref: Optional[str] = None
    approved_at: Optional[str] = None
    rejected_at: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, a: Approval) -> "ApprovalResponse":
        return cls(
            id=str(a.id),
            po_id=str(a.po_id),
            approver_id=a.approver_id,
            status=a.status,
            comment=a.comment,
            signature_ref=a.signature_ref,
            approved_at=iso(a.approved_at),
            rejected_at=iso(a.rejected_at),
            created_at=iso(a.created_at) or "",
        )


class ApprovalActionRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)
    signature_ref: Optional[str] = Field(None, max_length=500)


class ApprovalActionResponse(BaseModel):
    approval: ApprovalResponse
    po_status: str
