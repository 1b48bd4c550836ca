import re
from typing import Any, List, Optional

from loguru import logger

from pipeline.money import find_amounts, format_usd
from pipeline.state import AiDecision, EnrichedResult, QualificationResult, QualifyState, WorkspaceCriteria

# "(acme.com)", "(sec.gov, reuters.com)"
_PAREN_RE = re.compile(r"\(([^()]+)\)")
_DOMAIN_TOKEN_RE = re.compile(r"\b[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9-]+)*\.[a-z]{2,}\b", re.IGNORECASE)
_PRESS_RE = re.compile(
    r"(?:≥|>=|at\s+least)?\s*\d+\+?\s+(?:distinct\s+)?(?:reputable\s+)?(?:articles|outlets|press\s+mentions)\b",
    re.IGNORECASE,
)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def has_source_token(text: str) -> bool:
    return any(_DOMAIN_TOKEN_RE.search(group) for group in _PAREN_RE.findall(text or ""))


def has_verifiable_evidence(reason: Optional[str]) -> bool:
    """
    Whether an advisory reason can be checked by a human.

    Requires a parenthesized source domain plus either a money figure
    ("$60M", "1.2 billion USD") or a press-volume phrase ("≥ 5 reputable
    articles").
    """
    if not reason:
        return False
    if not has_source_token(reason):
        return False
    return bool(find_amounts(reason)) or bool(_PRESS_RE.search(reason))


def _count(value: float) -> str:
    return f"{int(value):,}"


def score_lead(enriched: EnrichedResult, criteria: Optional[WorkspaceCriteria] = None) -> QualificationResult:
    """
    Decide whether an enriched lead qualifies.

    Deterministic gate: employee count or total funding at or above the
    workspace minimum (either one is enough). Advisory gate: an "approved"
    decision counts only when its reason carries verifiable evidence.
    Missing data never raises; it just fails to qualify.
    """
    enriched = enriched or {}
    criteria = criteria or {}
    derived = enriched.get("derived") or {}
    company = enriched.get("company_enrichment") or {}
    decision: Optional[AiDecision] = enriched.get("ai_decision")

    employees = _number(company.get("employee_count"))
    funding = _number(company.get("total_funding_raised"))
    min_employees = _number(criteria.get("min_employees"))
    min_funding = _number(criteria.get("min_funding_usd"))

    if employees is not None and min_employees is not None and employees >= min_employees:
        return {
            "approved": True,
            "reason": f"{_count(employees)} employees meets the {_count(min_employees)} minimum",
        }

    if funding is not None and min_funding is not None and funding >= min_funding:
        return {
            "approved": True,
            "reason": f"{format_usd(funding)} funding meets the {format_usd(min_funding)} minimum",
        }

    advisory_status = (decision or {}).get("status")
    advisory_reason = (decision or {}).get("reason") or ""
    if advisory_status == "approved" and has_verifiable_evidence(advisory_reason):
        return {"approved": True, "reason": f"Advisory approval: {advisory_reason}"}

    misses: List[str] = []
    if not derived.get("domain") and not company:
        misses.append("no company domain could be derived from the email address")
    elif derived.get("personal_email") and not company:
        misses.append(f"personal email domain ({derived.get('domain')}) cannot be enriched")

    if not any(v is not None for v in (min_employees, min_funding)):
        misses.append("no employee or funding criteria configured")

    if employees is None:
        misses.append("no employee count")
    elif min_employees is not None:
        misses.append(f"{_count(employees)} employees (below {_count(min_employees)} minimum)")
    else:
        misses.append(f"{_count(employees)} employees")

    if funding is None:
        misses.append("no funding data")
    elif min_funding is not None:
        misses.append(f"{format_usd(funding)} funding (below {format_usd(min_funding)} minimum)")
    else:
        misses.append(f"{format_usd(funding)} funding")

    if decision is None:
        misses.append("advisory: none")
    elif advisory_status == "approved":
        misses.append("advisory: approved without verifiable evidence (ignored)")
    else:
        misses.append(f"advisory: {advisory_status or 'unknown'}" + (f" ({advisory_reason})" if advisory_reason else ""))

    return {"approved": False, "reason": "Not qualified: " + "; ".join(misses)}


async def score(state: QualifyState) -> QualifyState:
    """Score the enriched lead against the workspace criteria."""
    logger.info(f"Starting scoring for lead: {state.get('sid', 'unknown')}")

    try:
        result = score_lead(state.get("enriched") or {}, state.get("criteria"))
    except Exception as e:
        error_msg = f"Scoring failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        result = {"approved": False, "reason": error_msg}

    state["qualification"] = result
    logger.info(f"Qualification for {state.get('sid')}: {result['approved']} ({result['reason']})")
    return state
