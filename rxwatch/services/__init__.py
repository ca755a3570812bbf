# Services package
from rxwatch.services.data_service import DataService
from rxwatch.services.sync_metadata import SyncMetadataStore
from rxwatch.services.orchestrator import JobResult, JobStatus, SyncOrchestrator

__all__ = [
    "DataService",
    "SyncMetadataStore",
    "JobResult",
    "JobStatus",
    "SyncOrchestrator",
]
