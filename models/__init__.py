"""Records and tables used by the TripLog application."""
from .cache_entry import CacheEntry
from .pending_op import OpKind, OpStatus, PendingOp
from .segment import TripVehicleSegment
from .trip import Stop, Trip
from .vehicle import SyncStatus, Vehicle

__all__ = [
    "CacheEntry",
    "OpKind",
    "OpStatus",
    "PendingOp",
    "Stop",
    "SyncStatus",
    "Trip",
    "TripVehicleSegment",
    "Vehicle",
]
