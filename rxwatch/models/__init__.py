from rxwatch.models.base import Base
from rxwatch.models.raw import RawDPDDrug, RawDSCReport
from rxwatch.models.sync_metadata import SyncMetadata

__all__ = [
    "Base",
    "RawDSCReport",
    "RawDPDDrug",
    "SyncMetadata",
]
