from stockflow.models.user import User
from stockflow.models.audit_log import AuditLog
from stockflow.models.item import Item, Partner, Vendor, Warehouse
from stockflow.models.inventory import LedgerEntry
from stockflow.models.purchase import PurchaseRequest, PurchaseRequestItem
from stockflow.models.inbound import Inbound, InboundItem
from stockflow.models.outbound import Outbound, OutboundItem
from stockflow.models.opname import CountingSheet, CountingSheetLine, StockOpname, StockOpnameCount
from stockflow.models.adjustment import StockAdjustment, StockAdjustmentItem
from stockflow.models.returns import VendorReturn, VendorReturnItem
