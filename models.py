"""
SealDeal - Data Models
Pydantic schemas for deals, documents, analyses and benchmarks
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from exceptions import IllegalTransitionError


METRIC_NAMES = ("arr", "mrr", "cac", "ltv", "ltv_cac_ratio", "gross_margin")
ANALYSIS_SCHEMA_VERSION = "2.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DealStatus(str, Enum):
    AWAITING_UPLOAD = "1_AwaitingUpload"
    PROCESSING = "2_Processing"
    ANALYZED = "4_Analyzed"
    ERROR_PROCESSING_FAILED = "Error_Processing_Failed"
    ERROR_ANALYSIS_FAILED = "Error_Analysis_Failed"

    @property
    def is_error(self) -> bool:
        return self in (DealStatus.ERROR_PROCESSING_FAILED, DealStatus.ERROR_ANALYSIS_FAILED)


# Every path to a terminal state goes through PROCESSING; re-analysis restarts from it
ALLOWED_TRANSITIONS = {
    DealStatus.AWAITING_UPLOAD: {DealStatus.PROCESSING},
    DealStatus.PROCESSING: {
        DealStatus.ANALYZED,
        DealStatus.ERROR_PROCESSING_FAILED,
        DealStatus.ERROR_ANALYSIS_FAILED,
    },
    DealStatus.ANALYZED: {DealStatus.PROCESSING},
    DealStatus.ERROR_PROCESSING_FAILED: {DealStatus.PROCESSING},
    DealStatus.ERROR_ANALYSIS_FAILED: {DealStatus.PROCESSING},
}


DEFAULT_PROCESSING_LEASE_SECONDS = 900.0


def processing_lease_expired(
    started_at: Optional[datetime],
    lease_seconds: float = DEFAULT_PROCESSING_LEASE_SECONDS,
    now: Optional[datetime] = None,
) -> bool:
    """A PROCESSING claim with no start time, or one older than the lease, is abandoned"""
    if started_at is None:
        return True
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    return ((now or utcnow()) - started_at).total_seconds() > lease_seconds


def transition(current: DealStatus, target: DealStatus, lease_expired: bool = False) -> DealStatus:
    """
    Return target if the lifecycle allows current -> target, else raise.
    PROCESSING -> PROCESSING is only allowed to take over an expired lease.
    """
    current = DealStatus(current)
    target = DealStatus(target)
    if current is DealStatus.PROCESSING and target is DealStatus.PROCESSING and lease_expired:
        return target
    if target not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransitionError(current.value, target.value)
    return target


class UserRole(str, Enum):
    ANALYST = "analyst"
    PARTNER = "partner"
    ADMIN = "admin"
    BENCHMARKING_ADMIN = "benchmarking_admin"


class Recommendation(str, Enum):
    STRONG_CANDIDATE = "Strong Candidate"
    PROCEED_WITH_CAUTION = "Proceed with Caution"
    FURTHER_DILIGENCE = "Further Diligence Required"
    PASS = "Pass"


class CamelModel(BaseModel):
    """Firestore documents use camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Deal(CamelModel):
    """One company under evaluation"""
    id: Optional[str] = None
    deal_name: str
    owner_id: str
    status: DealStatus = DealStatus.AWAITING_UPLOAD
    created_at: datetime = Field(default_factory=utcnow)
    status_message: Optional[str] = None
    processing_started_at: Optional[datetime] = None


class DealDocument(CamelModel):
    """One uploaded source file (deals/{id}/documents)"""
    id: Optional[str] = None
    file_name: str
    storage_path: str
    uploaded_at: datetime = Field(default_factory=utcnow)


# === Analysis output ===

class Metric(BaseModel):
    value: Optional[float] = None
    source_quote: Optional[str] = None
    notes: Optional[str] = None


class Metrics(BaseModel):
    arr: Optional[Metric] = None
    mrr: Optional[Metric] = None
    cac: Optional[Metric] = None
    ltv: Optional[Metric] = None
    ltv_cac_ratio: Optional[Metric] = None
    gross_margin: Optional[Metric] = None


class SwotAnalysis(BaseModel):
    strengths: List[str] = []
    weaknesses: List[str] = []
    opportunities: List[str] = []
    threats: List[str] = []


class InvestmentMemo(BaseModel):
    executive_summary: str
    growth_potential: str
    investment_recommendation: Recommendation


class AnalysisResult(BaseModel):
    """Structured extraction returned by the model"""
    metrics: Metrics = Field(default_factory=Metrics)
    swot_analysis: SwotAnalysis = Field(default_factory=SwotAnalysis)
    risk_flags: List[str] = []
    benchmarking_summary: Optional[str] = None
    investment_memo: InvestmentMemo


class AnalysisRecord(AnalysisResult):
    """Persisted analysis (deals/{id}/analysis), immutable once written"""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    deal_id: str = Field(alias="dealId")
    created_by: str = Field(alias="createdBy")
    source_files: List[str] = Field(default_factory=list, alias="sourceFiles")
    analyzed_at: datetime = Field(default_factory=utcnow, alias="analyzedAt")
    version: str = ANALYSIS_SCHEMA_VERSION

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="python", by_alias=True, exclude={"id"})


# === Benchmarks ===

class Benchmark(BaseModel):
    """Peer data point used as prompt context"""
    model_config = ConfigDict(populate_by_name=True)

    industry: str
    stage: str
    arr: float
    mrr: Optional[float] = None
    cac: Optional[float] = None
    ltv: Optional[float] = None
    ltv_cac_ratio: Optional[float] = None
    added_by: Optional[str] = Field(None, alias="addedBy")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @model_validator(mode="after")
    def derive_ltv_cac_ratio(self):
        if self.ltv is not None and self.cac:
            self.ltv_cac_ratio = self.ltv / self.cac
        return self


class BenchmarkInput(BaseModel):
    """Admin form payload, validated by the benchmarks endpoint"""
    industry: Optional[str] = None
    stage: Optional[str] = None
    arr: Optional[float] = None
    mrr: Optional[float] = None
    cac: Optional[float] = None
    ltv: Optional[float] = None


# === Chat ===

class ChatMessage(BaseModel):
    role: str
    text: str
    sql: Optional[str] = None
    result: Optional[str] = None
    metadata: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")
    message: Optional[str] = None


# === API payloads ===

class CreateDealRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_name: Optional[str] = Field(None, alias="dealName")


class ComparisonRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_ids: Optional[Any] = Field(None, alias="dealIds")


class RoleUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_uid: Optional[str] = Field(None, alias="targetUid")
    new_role: Optional[str] = Field(None, alias="newRole")


class StorageEvent(BaseModel):
    """Object finalize notification (raw or CloudEvent-wrapped)"""
    name: Optional[str] = None
    bucket: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def object_name(self) -> Optional[str]:
        if self.name:
            return self.name
        if self.data:
            return self.data.get("name")
        return None
