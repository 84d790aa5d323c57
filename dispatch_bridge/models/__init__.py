from dispatch_bridge.models.companies import Company, SystemSettings
from dispatch_bridge.models.credentials import PartnerCredential
from dispatch_bridge.models.ledger import ProcessedEvent
from dispatch_bridge.models.jobs import DeliveryJob, DeliveryJobPlace, DeliveryJobBill
from dispatch_bridge.models.workers import Worker, Allocation
from dispatch_bridge.models.offers import NotificationOffer

__all__ = [
    "Company",
    "SystemSettings",
    "PartnerCredential",
    "ProcessedEvent",
    "DeliveryJob",
    "DeliveryJobPlace",
    "DeliveryJobBill",
    "Worker",
    "Allocation",
    "NotificationOffer",
]
