"""ORM models.  Importing this package registers every table on Base.metadata."""

from lab_kernel.models.extension import ExtensionRequestModel
from lab_kernel.models.inventory import ComponentStockModel
from lab_kernel.models.request import (
    RequestLineItemModel,
    ResourceDecisionModel,
    ResourceRequestModel,
)
from lab_kernel.models.slot_lock import SlotLockModel

__all__ = [
    "ResourceRequestModel",
    "ResourceDecisionModel",
    "RequestLineItemModel",
    "ExtensionRequestModel",
    "ComponentStockModel",
    "SlotLockModel",
]
