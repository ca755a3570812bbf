"""Drug Shortages Canada API schemas.

Reports are semi-structured: the fields the pipeline relies on are typed,
everything else is kept as-is so it can be stored verbatim.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, SecretStr

ReportKind = Literal["shortage", "discontinuance"]

ReportOrderBy = Literal["id", "company_name", "brand_name", "status", "type", "updated_date"]

# Report statuses that mean a shortage or discontinuation is still in effect
ACTIVE_STATUSES = ("active_confirmed", "anticipated_shortage", "to_be_discontinued")


class DSCCredential(BaseModel):
    """One DSC account from the DSC_ACCOUNTS pool."""

    model_config = ConfigDict(frozen=True)

    email: str
    password: SecretStr


class ReportQuery(BaseModel):
    """Parameters for the /search endpoint."""

    model_config = ConfigDict(frozen=True)

    term: Optional[str] = None
    din: Optional[str] = None
    report_id: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    orderby: Optional[ReportOrderBy] = None
    order: Optional[Literal["asc", "desc"]] = None
    filter_status: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        """Only set values are sent; zero limit/offset are omitted like unset ones."""
        return {key: str(value) for key, value in self.model_dump().items() if value}


class ReportType(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    label: ReportKind


class DSCReport(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    din: Optional[str] = None
    type: ReportType
    status: str
    company_name: Optional[str] = None
    created_date: Optional[str] = None
    updated_date: Optional[str] = None
    en_drug_brand_name: Optional[str] = None
    fr_drug_brand_name: Optional[str] = None
    en_drug_common_name: Optional[str] = None
    fr_drug_common_name: Optional[str] = None

    @property
    def kind(self) -> ReportKind:
        return self.type.label

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def raw(self) -> Dict[str, Any]:
        """Full upstream payload including untyped fields."""
        return self.model_dump(mode="json")


class DSCSearchResponse(BaseModel):
    data: List[DSCReport]
    total: int
    limit: Optional[int] = None
    offset: Optional[int] = None
