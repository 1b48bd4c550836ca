import os
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from integrations.base import MissingAPIKey, ProviderAdapter, ProviderError, ProviderResult
from pipeline import settings
from pipeline.money import extract_year, find_revenue_figure, format_usd, implies_revenue
from pipeline.normalize import normalize_website
from pipeline.state import AiDecision, WorkspaceCriteria

SERPAPI_URL = "https://serpapi.com/search.json"
SEARCH_SOURCE = "google.com"
NO_FIGURE_REASON = "No reputable revenue figure found via search."


@dataclass
class RevenueHit:
    value_usd: float
    snippet: str
    source: str
    year: Optional[int] = None


@dataclass
class _Candidate:
    text: str
    host: Optional[str]
    label: str


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text or "").lower()


def is_traceable(text: str, host: Optional[str], domain: str, company_name: Optional[str] = None) -> bool:
    """
    Whether a snippet can be attributed to the company being evaluated.

    Either the page lives on the queried domain (or a subdomain of it), or the
    snippet itself names the domain or the company, ignoring case and
    whitespace. Figures on unrelated pages are never attributed to the lead.
    """
    if host and domain and (host == domain or host.endswith(f".{domain}")):
        return True
    haystack = _squash(text)
    for needle in (domain, company_name):
        needle = _squash(needle or "")
        if len(needle) >= 3 and needle in haystack:
            return True
    return False


def build_queries(domain: str, company_name: Optional[str], max_queries: int) -> List[str]:
    queries = []
    if company_name:
        queries.append(f"{company_name} {domain} revenue")
    queries += [f"{domain} revenue", f"{domain} ARR", f"{domain} annual revenue"]
    return queries[:max_queries]


def revenue_reason(hit: RevenueHit) -> str:
    year = f" ({hit.year})" if hit.year else ""
    return f"Revenue ≈ {format_usd(hit.value_usd)}{year} ({hit.source})"


def _candidates(payload: Dict[str, Any]) -> List[_Candidate]:
    """Flatten knowledge graph, answer box and organic results into scannable text."""
    found = []

    kg = payload.get("knowledge_graph")
    if isinstance(kg, dict):
        revenue = kg.get("revenue") or kg.get("Revenue")
        if isinstance(revenue, str):
            title = kg.get("title") if isinstance(kg.get("title"), str) else ""
            found.append(_Candidate(f"{title} revenue {revenue}".strip(), normalize_website(kg.get("website")), "kg"))

    ab = payload.get("answer_box")
    if isinstance(ab, dict):
        title = ab.get("title") if isinstance(ab.get("title"), str) else ""
        host = normalize_website(ab.get("link")) if isinstance(ab.get("link"), str) else None
        for key in ("answer", "snippet", "result", "result_snippet", "result_title"):
            value = ab.get(key)
            if isinstance(value, str) and value:
                found.append(_Candidate(f"{title} {value}".strip(), host, "answer_box"))

    organic = payload.get("organic_results")
    for result in organic if isinstance(organic, list) else []:
        if not isinstance(result, dict):
            continue
        extensions = ((result.get("rich_snippet") or {}).get("top") or {}).get("extensions")
        parts = [result.get("title"), result.get("snippet")]
        if isinstance(extensions, list):
            parts.append(" • ".join(str(e) for e in extensions))
        text = " - ".join(p for p in parts if isinstance(p, str) and p)
        link = result.get("link") or result.get("displayed_link") or result.get("source")
        host = normalize_website(link) if isinstance(link, str) else None
        if text:
            found.append(_Candidate(text, host, "organic"))

    return found


def extract_hits(payload: Dict[str, Any], domain: str, company_name: Optional[str] = None) -> List[RevenueHit]:
    """Revenue figures in one search response that pass the USD and attribution gates."""
    hits = []
    for candidate in _candidates(payload):
        if not implies_revenue(candidate.text):
            continue
        figure = find_revenue_figure(candidate.text)
        if figure is None:
            continue
        if figure.usd is None:
            logger.debug(f"[serp] skipping {figure.currency} figure: {figure.text}")
            continue
        if not is_traceable(candidate.text, candidate.host, domain, company_name):
            logger.debug(f"[serp] skipping unattributable figure from {candidate.host}: {figure.text}")
            continue
        hits.append(RevenueHit(
            value_usd=figure.usd,
            snippet=candidate.text[:300],
            source=candidate.host or SEARCH_SOURCE,
            year=extract_year(candidate.text, near=figure.start),
        ))
    return hits


def decide(hits: List[RevenueHit], min_revenue_usd: float, recent_year_cutoff: int) -> AiDecision:
    """Pick the freshest, largest figure and compare it to the floor."""
    if not hits:
        return {"status": "unsure", "reason": NO_FIGURE_REASON}

    ranked = sorted(hits, key=lambda h: (h.year or 0, h.value_usd), reverse=True)
    recent = [h for h in ranked if not h.year or h.year >= recent_year_cutoff]
    top = (recent or ranked)[0]

    if recent and top.value_usd >= min_revenue_usd:
        return {"status": "approved", "reason": revenue_reason(top)}

    year = f" ({top.year})" if top.year else ""
    return {
        "status": "unsure",
        "reason": f"Found revenue signal but < {format_usd(min_revenue_usd)} or stale{year} ({top.source})",
    }


class SerpClient(ProviderAdapter):
    """Revenue signal from Google results via SerpAPI."""

    name = "serp"
    field = "ai_decision"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = settings.SERP_TIMEOUT,
        request_timeout: float = settings.SERP_REQUEST_TIMEOUT,
        max_queries: int = settings.SERP_MAX_QUERIES,
        recency_years: int = settings.REVENUE_RECENCY_YEARS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout)
        self.api_key = api_key or os.getenv("SERP_API_KEY") or os.getenv("SERPAPI_API_KEY")
        if not self.api_key:
            raise MissingAPIKey("SERP_API_KEY")
        self.request_timeout = request_timeout
        self.max_queries = max_queries
        self.recency_years = recency_years
        self.transport = transport

    async def search(self, query: str, num: int = 10, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Run one Google search through SerpAPI.

        Raises:
            httpx.HTTPError: on transport failures and non-2xx responses
        """
        async with httpx.AsyncClient(timeout=timeout or self.request_timeout, transport=self.transport) as client:
            response = await client.get(
                SERPAPI_URL,
                params={"engine": "google", "q": query, "num": str(num), "api_key": self.api_key},
            )
            response.raise_for_status()
            payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def snippets(self, query: str, num: int = 5) -> List[Dict[str, str]]:
        """Organic results as title/snippet/link dicts; empty on any failure."""
        try:
            payload = await self.search(query, num=num)
        except Exception as e:
            logger.error(f"[serp] search failed for {query!r}: {e}")
            return []
        results = []
        for item in payload.get("organic_results") or []:
            if isinstance(item, dict):
                results.append({
                    "title": str(item.get("title") or ""),
                    "snippet": str(item.get("snippet") or item.get("description") or ""),
                    "link": str(item.get("link") or ""),
                })
        return results

    async def _fetch(
        self,
        domain: str,
        company_name: Optional[str] = None,
        criteria: Optional[WorkspaceCriteria] = None,
    ) -> ProviderResult:
        min_revenue = (criteria or {}).get("min_revenue_usd") or settings.MIN_REVENUE_USD
        cutoff = datetime.now().year - self.recency_years
        queries = build_queries(domain, company_name, self.max_queries)

        # Stop a little before the outer timeout so collected hits survive.
        deadline = time.monotonic() + self.timeout - 0.25
        hits: List[RevenueHit] = []
        answered = 0
        last_error: Optional[str] = None
        logger.info(f"[serp] evaluating {domain} with {len(queries)} queries")

        for query in queries:
            time_left = deadline - time.monotonic()
            if time_left <= 0.15:
                logger.warning(f"[serp] budget exhausted for {domain}")
                break
            try:
                payload = await self.search(query, timeout=min(self.request_timeout, time_left))
            except Exception as e:
                last_error = f"{query!r}: {e}"
                logger.warning(f"[serp] query failed {last_error}")
                continue
            answered += 1

            for hit in extract_hits(payload, domain, company_name):
                hits.append(hit)
                if hit.value_usd >= min_revenue and (not hit.year or hit.year >= cutoff):
                    logger.info(f"[serp] qualifying figure for {domain}: {revenue_reason(hit)}")
                    return ProviderResult(
                        self.name,
                        data={"status": "approved", "reason": revenue_reason(hit)},
                        meta={"hits": len(hits), "queries": answered},
                    )

        if answered == 0:
            return ProviderResult(self.name, error=ProviderError(last_error or "No search queries completed"))

        decision = decide(hits, min_revenue, cutoff)
        logger.info(f"[serp] {domain}: {decision['status']} ({len(hits)} hits)")
        return ProviderResult(self.name, data=decision, meta={"hits": len(hits), "queries": answered})
