"""Health Canada Drug Product Database schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class DPDDrug(BaseModel):
    """One row of the /drugproduct/ listing."""

    model_config = ConfigDict(extra="allow")

    drug_code: int
    drug_identification_number: Optional[str] = None
    brand_name: Optional[str] = None
    company_name: Optional[str] = None
    last_update_date: Optional[str] = None

    @property
    def din(self) -> Optional[str]:
        return self.drug_identification_number


class DPDDrugDetails(BaseModel):
    ingredients: List[Dict[str, Any]] = []
    forms: List[Dict[str, Any]] = []
    routes: List[Dict[str, Any]] = []
    therapeutics: List[Dict[str, Any]] = []
    status: Optional[Dict[str, Any]] = None


class DPDSyncState(BaseModel):
    """Persisted between DPD runs for change detection."""

    last_sync_at: datetime
    drugs_count: int = 0
    last_content_length: Optional[int] = None
    last_full_sync_at: Optional[datetime] = None
