import json
import os
from typing import Any, Optional, Union

import httpx
from loguru import logger

from integrations.base import MissingAPIKey, ProviderAdapter, ProviderError, ProviderResult
from pipeline import settings
from pipeline.money import coerce_number
from pipeline.state import CompanyEnrichment, WorkspaceCriteria

PDL_COMPANY_ENRICH_URL = "https://api.peopledatalabs.com/v5/company/enrich"
USER_AGENT = "lead-gate/1.0"


def _body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def parse_company(body: Any) -> Union[CompanyEnrichment, ProviderError]:
    """
    Read a company enrichment payload.

    The record may sit at the top level or under "data". Counts arrive as
    numbers or as decorated strings ("$1,200,000"); both become floats.
    """
    if not isinstance(body, dict):
        return ProviderError("Unexpected response shape", body=body)
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    name = data.get("display_name") or data.get("name")
    sectors = []
    for value in (data.get("industry"), data.get("industry_v2")):
        if isinstance(value, str) and value and value not in sectors:
            sectors.append(value)
    size = data.get("size")

    return {
        "employee_count": coerce_number(data.get("employee_count")),
        "total_funding_raised": coerce_number(data.get("total_funding_raised")),
        "name": name if isinstance(name, str) else None,
        "sector": ", ".join(sectors) or None,
        "size": size if isinstance(size, str) else None,
    }


class PDLClient(ProviderAdapter):
    """Structured company lookup by domain using People Data Labs."""

    name = "pdl"
    field = "company_enrichment"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = settings.PDL_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout)
        self.api_key = api_key or os.getenv("PDL_API_KEY")
        if not self.api_key:
            raise MissingAPIKey("PDL_API_KEY")
        self.transport = transport

    async def _fetch(
        self,
        domain: str,
        company_name: Optional[str] = None,
        criteria: Optional[WorkspaceCriteria] = None,
    ) -> ProviderResult:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                PDL_COMPANY_ENRICH_URL,
                json={"website": domain, "include_if_matched": True},
                headers={
                    "Content-Type": "application/json",
                    "X-Api-Key": self.api_key,
                    "User-Agent": USER_AGENT,
                },
            )
        body = _body(response)

        if not response.is_success:
            logger.warning(f"[pdl] {response.status_code} for {domain}")
            return ProviderResult(
                self.name,
                error=ProviderError(f"HTTP {response.status_code}", status=response.status_code, body=body),
            )

        parsed = parse_company(body)
        if isinstance(parsed, ProviderError):
            parsed.status = response.status_code
            logger.warning(f"[pdl] unparseable response for {domain}")
            return ProviderResult(self.name, error=parsed)

        logger.info(
            f"[pdl] hit {domain}: name={parsed['name']} employees={parsed['employee_count']} "
            f"funding={parsed['total_funding_raised']}"
        )
        return ProviderResult(self.name, data=parsed)
