import json
import os
import re
from typing import Any, Dict, List, Optional

from loguru import logger
from openai import AsyncOpenAI

from integrations.base import MissingAPIKey, ProviderAdapter, ProviderResult
from pipeline import settings
from pipeline.money import format_usd
from pipeline.state import AiDecision, WorkspaceCriteria

ALLOWED_STATUSES = ("approved", "rejected", "unsure")
MIN_RECENT_ARTICLES = 5
LLM_MIN_REVENUE_USD = 10_000_000

SYSTEM_PROMPT = "Only output valid JSON. Do not include markdown, code fences, or any extra text."


def build_evaluation_prompt(domain: str, min_revenue_usd: float, min_recent_articles: int = MIN_RECENT_ARTICLES) -> str:
    """Revenue-and-press rubric. Headcount and funding are scored elsewhere and must be ignored."""
    return f"""You are a conservative B2B qualification analyst.
Judge the company behind {domain} using ONLY revenue information and reputable press volume.
IGNORE headcount and funding entirely.

RUBRIC:
- APPROVE if a reputable, dated source states annual revenue (ARR or fiscal revenue) of at least {format_usd(min_revenue_usd)} USD.
- APPROVE if at least {min_recent_articles} distinct reputable outlets covered the company in the past 12 months and one of them mentions paying customers, revenue scale or commercial traction.
- REJECT if the domain is a non-profit, personal site, student project, parked domain, or shows no commercial activity.
- UNSURE if you cannot point to reputable, recent sources.

Return ONLY valid JSON in this format:
{{"status": "approved | rejected | unsure", "reason": "max 2 sentences with at least one revenue figure OR the phrase '≥ {min_recent_articles} reputable articles (past 12 months)', and the primary source domain(s) in parentheses"}}

Do not mention headcount or funding. Do not guess. If uncertain, return "unsure".

Domain: {domain}"""


def parse_decision(content: Optional[str]) -> AiDecision:
    """Read the model's {status, reason} JSON; anything else degrades to unsure."""
    if not content or not content.strip():
        return {"status": "unsure", "reason": "Empty response from model."}
    try:
        start, end = content.find("{"), content.rfind("}") + 1
        if start < 0 or end <= start:
            raise ValueError("no JSON object")
        parsed = json.loads(content[start:end])
    except ValueError:
        logger.warning("Could not parse LLM response as JSON")
        return {"status": "unsure", "reason": "Model did not return parseable JSON."}

    status = parsed.get("status") if isinstance(parsed, dict) else None
    status = status.strip().lower() if isinstance(status, str) else ""
    if status not in ALLOWED_STATUSES:
        return {"status": "unsure", "reason": "Non-conforming status from model."}
    reason = parsed.get("reason")
    return {"status": status, "reason": reason if isinstance(reason, str) else ""}


def parse_summary(content: str) -> Dict[str, Any]:
    """Split a SUMMARY/PRIORITY/REASONING response into its parts."""
    summary = re.search(r"SUMMARY:\s*([\s\S]*?)(?=PRIORITY:|$)", content)
    priority = re.search(r"PRIORITY:\s*(YES|NO)", content, re.IGNORECASE)
    reasoning = re.search(r"REASONING:\s*([\s\S]*?)$", content)
    return {
        "summary": summary.group(1).strip() if summary and summary.group(1).strip() else content.strip(),
        "priority": bool(priority and priority.group(1).upper() == "YES"),
        "reasoning": reasoning.group(1).strip() if reasoning else "",
    }


def fallback_summary(company_name: str, snippets: List[Dict[str, str]]) -> Dict[str, Any]:
    """Summary built straight from the top search results when the model is unavailable."""
    lines = [f"• {s.get('snippet') or s.get('title')}" for s in snippets[:3] if s.get("snippet") or s.get("title")]
    return {
        "summary": f"Based on search results for {company_name}:\n\n" + "\n\n".join(lines),
        "priority": False,
        "reasoning": "Unable to assess priority due to AI processing error",
    }


class LLMClient(ProviderAdapter):
    """OpenAI-backed qualitative evaluator and company brief writer."""

    name = "llm"
    field = "ai_decision"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = settings.LLM_TIMEOUT,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(timeout)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key and client is None:
            raise MissingAPIKey("OPENAI_API_KEY")
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.client = client or AsyncOpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)

    async def _complete(self, system: str, prompt: str, max_tokens: int, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=0.1,
            max_tokens=max_tokens,
            **kwargs,
        )
        return response.choices[0].message.content or ""

    async def _fetch(
        self,
        domain: str,
        company_name: Optional[str] = None,
        criteria: Optional[WorkspaceCriteria] = None,
    ) -> ProviderResult:
        min_revenue = (criteria or {}).get("min_revenue_usd") or LLM_MIN_REVENUE_USD
        content = await self._complete(
            SYSTEM_PROMPT,
            build_evaluation_prompt(domain, min_revenue),
            max_tokens=256,
            json_mode=True,
        )
        decision = parse_decision(content)
        logger.info(f"[llm] {domain}: {decision['status']}")
        return ProviderResult(self.name, data=decision)

    async def summarize_company(self, company_name: str, domain: str, snippets: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Write a sales brief for a company from search snippets.

        Args:
            company_name: Name as submitted on the form
            domain: Company domain
            snippets: Organic search results (title, snippet, link)

        Returns:
            Dict with summary, priority (bool) and reasoning
        """
        context = "\n\n".join(f"{s['title']}: {s['snippet']} ({s['link']})" for s in snippets)
        prompt = f"""Based on the following search results, summarize {company_name} (domain: {domain}) and decide whether it is a high-priority sales prospect.

Search results:
{context}

Cover what the company does, key products, size and location if available, recent news, and funding if available.

Treat as HIGH PRIORITY: fast-growing startups, companies with Series A+ or $5M+ raised, high revenue or market presence, frequent press coverage, companies in hot sectors, or enterprises with 1000+ employees.

Format your response as:
SUMMARY: [summary, 200-300 words]

PRIORITY: YES/NO
REASONING: [brief explanation]"""

        content = await self._complete("You are a sales research analyst.", prompt, max_tokens=500)
        return parse_summary(content)
