import asyncio
from typing import Any, Dict, Optional

from integrations.base import MissingAPIKey, ProviderAdapter, ProviderError, ProviderResult
from integrations.cache import enrichment_key
from pipeline.orchestrator import EnrichmentOrchestrator

PDL_DATA = {"employee_count": 400.0, "total_funding_raised": None, "name": "Acme", "sector": None, "size": None}
SERP_DATA = {"status": "approved", "reason": "Revenue ≈ $60,000,000 (acme.com)"}


class StubAdapter(ProviderAdapter):
    """Adapter returning canned data, raising, or sleeping past its timeout."""

    def __init__(self, name: str, data: Optional[Dict[str, Any]] = None, exc: Exception = None, delay: float = 0, timeout: float = 1.0):
        super().__init__(timeout)
        self.name = name
        self.data = data
        self.exc = exc
        self.delay = delay
        self.calls = []

    async def _fetch(self, domain, company_name=None, criteria=None):
        self.calls.append((domain, company_name, criteria))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return ProviderResult(self.name, data=self.data)


def _missing_key():
    raise MissingAPIKey("PDL_API_KEY")


class TestEnrichmentOrchestrator:
    """Concurrent enrichment across providers."""

    def setup_method(self):
        self.pdl = StubAdapter("pdl", data=PDL_DATA)
        self.serp = StubAdapter("serp", data=SERP_DATA)

    def _orchestrator(self, cache, **factories):
        defaults = {"pdl": lambda: self.pdl, "serp": lambda: self.serp}
        defaults.update(factories)
        return EnrichmentOrchestrator(cache=cache, factories=defaults, advisory="serp")

    async def test_both_providers_fill_their_fields(self, memory_cache, answers):
        enriched = await self._orchestrator(memory_cache).enrich_all(answers, {"min_revenue_usd": 1})

        assert enriched["company_enrichment"] == PDL_DATA
        assert enriched["ai_decision"] == SERP_DATA
        assert enriched["debug"] == {}
        assert enriched["derived"]["domain"] == "acme.com"
        assert self.serp.calls == [("acme.com", "Acme", {"min_revenue_usd": 1})]

    async def test_one_failure_does_not_affect_the_other(self, memory_cache, answers):
        self.pdl.exc = RuntimeError("connection reset")
        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["company_enrichment"] is None
        assert enriched["ai_decision"] == SERP_DATA
        assert enriched["debug"] == {"pdl_error": "connection reset"}

    async def test_timeout_is_recorded(self, memory_cache, answers):
        self.pdl = StubAdapter("pdl", data=PDL_DATA, delay=1, timeout=0.05)
        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["company_enrichment"] is None
        assert enriched["debug"]["pdl_error"] == "Timed out after 0.05s"
        assert enriched["ai_decision"] == SERP_DATA

    async def test_missing_api_key(self, memory_cache, answers):
        enriched = await self._orchestrator(memory_cache, pdl=_missing_key).enrich_all(answers)

        assert enriched["company_enrichment"] is None
        assert enriched["debug"]["pdl_error"] == "Missing PDL_API_KEY"
        assert enriched["ai_decision"] == SERP_DATA

    async def test_error_descriptor_with_status(self, memory_cache, answers):
        class NotFound(StubAdapter):
            async def _fetch(self, domain, company_name=None, criteria=None):
                return ProviderResult("pdl", error=ProviderError("HTTP 404", status=404, body={"error": "not found"}))

        enriched = await self._orchestrator(memory_cache, pdl=lambda: NotFound("pdl")).enrich_all(answers)

        assert enriched["debug"]["pdl_error"] == {"status": 404, "body": {"error": "not found"}, "message": "HTTP 404"}

    async def test_cache_hit_skips_provider(self, memory_cache, answers):
        cached = dict(PDL_DATA, name="Acme (cached)")
        await memory_cache.set(enrichment_key("acme.com"), cached, ttl=60)

        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["company_enrichment"] == cached
        assert self.pdl.calls == []

    async def test_malformed_cache_entry_is_a_miss(self, memory_cache, answers):
        await memory_cache.set(enrichment_key("acme.com"), "garbage", ttl=60)

        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["company_enrichment"] == PDL_DATA
        assert len(self.pdl.calls) == 1
        assert await memory_cache.get(enrichment_key("acme.com")) == PDL_DATA

    async def test_successful_lookup_is_cached(self, memory_cache, answers):
        orchestrator = self._orchestrator(memory_cache)
        await orchestrator.enrich_all(answers)
        await orchestrator.enrich_all(answers)

        assert await memory_cache.get(enrichment_key("acme.com")) == PDL_DATA
        assert len(self.pdl.calls) == 1
        # advisory results are not cached
        assert len(self.serp.calls) == 2

    async def test_failures_are_not_cached(self, memory_cache, answers):
        self.pdl.exc = RuntimeError("boom")
        await self._orchestrator(memory_cache).enrich_all(answers)

        assert await memory_cache.get(enrichment_key("acme.com")) is None

    async def test_no_domain_makes_no_calls(self, memory_cache, answers):
        answers["Email Address"] = "bad-email"
        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["company_enrichment"] is None
        assert enriched["ai_decision"] is None
        assert enriched["debug"] == {}
        assert self.pdl.calls == [] and self.serp.calls == []

    async def test_personal_email_makes_no_calls(self, memory_cache, answers):
        answers["Email Address"] = "jane@gmail.com"
        enriched = await self._orchestrator(memory_cache).enrich_all(answers)

        assert enriched["derived"]["personal_email"] is True
        assert self.pdl.calls == [] and self.serp.calls == []

    async def test_website_domain_is_used(self, memory_cache, answers):
        answers["Website"] = "https://www.acme-corp.com"
        await self._orchestrator(memory_cache).enrich_all(answers)

        assert self.pdl.calls[0][0] == "acme-corp.com"

    def test_advisory_selection(self, memory_cache):
        factories = {"pdl": lambda: self.pdl, "serp": lambda: self.serp, "llm": lambda: self.serp}
        assert EnrichmentOrchestrator(cache=memory_cache, factories=factories, advisory="serp").providers() == ["pdl", "serp"]
        assert EnrichmentOrchestrator(cache=memory_cache, factories=factories, advisory="llm").providers() == ["pdl", "llm"]
        assert EnrichmentOrchestrator(cache=memory_cache, factories=factories, advisory="none").providers() == ["pdl"]

    def test_merge_never_overwrites(self):
        enriched = {"company_enrichment": None, "ai_decision": {"status": "rejected", "reason": "first"}, "derived": {}, "debug": {}}
        EnrichmentOrchestrator._merge(enriched, "serp", ProviderResult("serp", data=SERP_DATA))

        assert enriched["ai_decision"] == {"status": "rejected", "reason": "first"}
