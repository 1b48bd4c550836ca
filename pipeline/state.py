from typing import TypedDict, Optional, List, Dict, Any

# Form field label -> value. Missing fields are "" rather than absent.
Answers = Dict[str, str]


class WorkspaceCriteria(TypedDict, total=False):
    min_employees: Optional[float]
    min_funding_usd: Optional[float]
    min_revenue_usd: Optional[float]


class CompanyEnrichment(TypedDict, total=False):
    """Structured company record. None on a field means the provider had no answer."""
    employee_count: Optional[float]
    total_funding_raised: Optional[float]
    name: Optional[str]
    sector: Optional[str]
    size: Optional[str]


class AiDecision(TypedDict):
    status: str                      # "approved" | "rejected" | "unsure"
    reason: str


class Derived(TypedDict, total=False):
    email: str
    domain: Optional[str]
    website: Optional[str]
    company_name: str
    seats: Optional[int]
    company_size: Optional[str]
    computers: Optional[str]
    personal_email: bool


class EnrichedResult(TypedDict, total=False):
    company_enrichment: Optional[CompanyEnrichment]
    ai_decision: Optional[AiDecision]
    derived: Derived
    debug: Dict[str, Any]            # "<provider>_error" -> error descriptor


class QualificationResult(TypedDict):
    approved: bool
    reason: str


class QualifyState(TypedDict, total=False):
    """State shape for the qualification workflow."""
    sid: str
    raw: Dict[str, Any]              # original payload or query params
    answers: Answers
    workspace_name: str
    workspace: Optional[Dict[str, Any]]
    criteria: Optional[WorkspaceCriteria]
    enriched: EnrichedResult
    qualification: QualificationResult
    notifications: List[str]         # queued side-effect job names
    errors: List[str]
