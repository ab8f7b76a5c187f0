from fastapi import Depends, HTTPException, status

from po_lifecycle.middleware.auth import get_current_user


class Capability:
    PO_READ = "po:read"
    PO_CREATE = "po:create"
    PO_EDIT = "po:edit"
    PO_SUBMIT = "po:submit"
    PO_DISPATCH = "po:dispatch"
    APPROVAL_READ = "approval:read"
    APPROVAL_RESOLVE = "approval:resolve"
    GRN_READ = "grn:read"
    GRN_POST = "grn:post"
    PAYMENT_UPDATE = "payment:update"


_BUYER = frozenset({
    Capability.PO_READ,
    Capability.PO_CREATE,
    Capability.PO_EDIT,
    Capability.PO_SUBMIT,
    Capability.PO_DISPATCH,
    Capability.APPROVAL_READ,
    Capability.GRN_READ,
})
_APPROVER = frozenset({
    Capability.PO_READ,
    Capability.APPROVAL_READ,
    Capability.APPROVAL_RESOLVE,
    Capability.GRN_READ,
})

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "admin": frozenset(
        v for k, v in vars(Capability).items() if not k.startswith("_")
    ),
    "cfo": _APPROVER | {Capability.PAYMENT_UPDATE},
    "finance_head": _APPROVER | {Capability.PAYMENT_UPDATE},
    "finance": frozenset({Capability.PO_READ, Capability.GRN_READ, Capability.PAYMENT_UPDATE}),
    "procurement_lead": _BUYER | {Capability.APPROVAL_RESOLVE},
    "procurement": _BUYER,
    "manager": _APPROVER,
    "warehouse": frozenset({Capability.PO_READ, Capability.GRN_READ, Capability.GRN_POST}),
    # Vendors act only through their acceptance token.
    "vendor": frozenset(),
}


def capabilities_for(role: str) -> frozenset[str]:
    """Pure mapping from a role claim to the capabilities it grants."""
    return ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(capability: str):
    """
    FastAPI dependency factory for capability-based access control.

    Usage:
        @router.post("/{po_id}/submit")
        async def submit(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_capability(Capability.PO_SUBMIT)),
        ):
    """
    async def check_capability(current_user: dict = Depends(get_current_user)):
        if capability not in capabilities_for(current_user["role"]):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required capability: {capability}"
                        ),
                    }
                },
            )
        return None

    return check_capability
