# Import all models so that SQLAlchemy registers them for metadata.create_all
from tablebook.models.audit_log import AuditLog
from tablebook.models.availability_cache import AvailabilityCacheEntry, AvailabilityCacheGeneration
from tablebook.models.block import Block
from tablebook.models.booking_lock import BookingLock
from tablebook.models.pos import EventQueueItem, ManualReview, OrderLink, PosDeviceMap, PosLocationMap, PosWebhookEvent
from tablebook.models.rate_limit import RateLimitBucket
from tablebook.models.reservation import Reservation, ReservationAllocation
from tablebook.models.resource import Resource, ResourceGroup
from tablebook.models.service import BookingWindow, Service
from tablebook.models.venue import Venue

__all__ = [
    "AuditLog",
    "AvailabilityCacheEntry",
    "AvailabilityCacheGeneration",
    "Block",
    "BookingLock",
    "BookingWindow",
    "EventQueueItem",
    "ManualReview",
    "OrderLink",
    "PosDeviceMap",
    "PosLocationMap",
    "PosWebhookEvent",
    "RateLimitBucket",
    "Reservation",
    "ReservationAllocation",
    "Resource",
    "ResourceGroup",
    "Service",
    "Venue",
]
