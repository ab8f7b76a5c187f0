"""Central model registry — import all models so Alembic autodiscover works."""

from po_lifecycle.database import Base  # noqa: F401

from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem  # noqa: F401
from po_lifecycle.models.approval import Approval  # noqa: F401
from po_lifecycle.models.vendor_token import VendorAcceptanceToken  # noqa: F401
from po_lifecycle.models.receipt import GoodsReceivedNote, GrnLineItem  # noqa: F401
from po_lifecycle.models.audit_log import AuditLog  # noqa: F401
from po_lifecycle.models.number_sequence import NumberSequence  # noqa: F401
