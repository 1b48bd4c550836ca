"""
Enrichment fan-out.

All applicable providers run concurrently and every one of them is allowed
to settle; scoring may need more than one signal, so nothing races to the
first answer. A provider that fails or times out only fills its own debug
slot. Each provider owns one field of the EnrichedResult and later results
never overwrite a field that is already set.
"""

import asyncio
from typing import Callable, Dict, List, Optional

from loguru import logger

from integrations.base import MissingAPIKey, ProviderAdapter, ProviderError, ProviderResult
from integrations.cache import Cache, cache as default_cache, enrichment_key
from integrations.llm import LLMClient
from integrations.pdl import PDLClient
from integrations.serp import SerpClient
from pipeline import settings
from pipeline.normalize import derive
from pipeline.state import Answers, EnrichedResult, WorkspaceCriteria

AdapterFactory = Callable[[], ProviderAdapter]

DEFAULT_FACTORIES: Dict[str, AdapterFactory] = {
    "pdl": PDLClient,
    "serp": SerpClient,
    "llm": LLMClient,
}

PROVIDER_FIELDS = {
    "pdl": "company_enrichment",
    "serp": "ai_decision",
    "llm": "ai_decision",
}

# Providers whose successful results are cached per domain
CACHE_KEYS = {
    "pdl": enrichment_key,
}


class EnrichmentOrchestrator:

    def __init__(
        self,
        cache: Optional[Cache] = None,
        factories: Optional[Dict[str, AdapterFactory]] = None,
        advisory: str = settings.ADVISORY_PROVIDER,
        enrichment_ttl: int = settings.ENRICHMENT_CACHE_TTL,
    ):
        self.cache = cache or default_cache
        self.factories = dict(DEFAULT_FACTORIES if factories is None else factories)
        self.advisory = advisory
        self.enrichment_ttl = enrichment_ttl
        self._adapters: Dict[str, ProviderAdapter] = {}

    def providers(self) -> List[str]:
        """Structured lookup plus at most one advisory provider."""
        names = ["pdl"]
        if self.advisory in ("serp", "llm"):
            names.append(self.advisory)
        return [n for n in names if n in self.factories]

    def _adapter(self, name: str) -> ProviderAdapter:
        if name not in self._adapters:
            self._adapters[name] = self.factories[name]()
        return self._adapters[name]

    async def _run(
        self,
        name: str,
        domain: str,
        company_name: Optional[str],
        criteria: Optional[WorkspaceCriteria],
    ) -> ProviderResult:
        key_for = CACHE_KEYS.get(name)
        if key_for:
            cached = await self.cache.get(key_for(domain))
            if isinstance(cached, dict):
                logger.info(f"[{name}] cache hit for {domain}")
                return ProviderResult(name, data=cached, cached=True)
            if cached is not None:
                logger.warning(f"[{name}] ignoring malformed cache entry for {domain}")

        try:
            adapter = self._adapter(name)
        except MissingAPIKey as e:
            logger.error(f"[{name}] not configured: {e}")
            return ProviderResult(name, error=ProviderError(str(e)))

        result = await adapter.fetch(domain, company_name=company_name, criteria=criteria)
        if key_for and result.data is not None:
            await self.cache.set(key_for(domain), result.data, self.enrichment_ttl)
        return result

    @staticmethod
    def _merge(enriched: EnrichedResult, name: str, result: ProviderResult) -> None:
        if result.error is not None:
            enriched["debug"][f"{name}_error"] = result.error.to_debug()
        if result.data is None:
            return
        field = PROVIDER_FIELDS.get(name)
        if not field:
            logger.warning(f"[{name}] has no result field, ignoring its data")
            return
        if enriched.get(field) is not None:
            logger.warning(f"[{name}] {field} already set, keeping the earlier value")
            return
        enriched[field] = dict(result.data)

    async def enrich_all(self, answers: Answers, criteria: Optional[WorkspaceCriteria] = None) -> EnrichedResult:
        """
        Enrich one lead.

        Args:
            answers: Normalized form answers
            criteria: Workspace thresholds (the revenue floor feeds the advisory provider)

        Returns:
            EnrichedResult; only `derived` is filled when no domain can be enriched
        """
        derived = derive(answers)
        enriched: EnrichedResult = {
            "company_enrichment": None,
            "ai_decision": None,
            "derived": derived,
            "debug": {},
        }

        domain = derived.get("domain")
        if not domain:
            logger.info(f"No domain derivable for {derived.get('email')!r}, skipping enrichment")
            return enriched
        if derived.get("personal_email"):
            logger.info(f"Personal email domain {domain}, skipping enrichment")
            return enriched

        names = self.providers()
        company_name = derived.get("company_name") or None
        results = await asyncio.gather(
            *(self._run(name, domain, company_name, criteria) for name in names),
            return_exceptions=True,
        )

        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"[{name}] crashed outside its adapter: {result}")
                enriched["debug"][f"{name}_error"] = str(result) or result.__class__.__name__
                continue
            self._merge(enriched, name, result)

        logger.info(
            f"Enrichment for {domain}: company={'yes' if enriched['company_enrichment'] else 'no'} "
            f"advisory={(enriched['ai_decision'] or {}).get('status')} debug={list(enriched['debug'])}"
        )
        return enriched


# Global orchestrator instance
orchestrator = EnrichmentOrchestrator()


async def enrich_all(answers: Answers, criteria: Optional[WorkspaceCriteria] = None) -> EnrichedResult:
    """Enrich using the global orchestrator."""
    return await orchestrator.enrich_all(answers, criteria)
