from loguru import logger

from pipeline import orchestrator
from pipeline.normalize import derive
from pipeline.state import QualifyState


async def enrich(state: QualifyState) -> QualifyState:
    """Enrich the lead from all configured providers."""
    logger.info(f"Starting enrichment for lead: {state.get('sid', 'unknown')}")

    try:
        state["enriched"] = await orchestrator.enrich_all(state.get("answers", {}), state.get("criteria"))
    except Exception as e:
        error_msg = f"Enrichment failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["enriched"] = {
            "company_enrichment": None,
            "ai_decision": None,
            "derived": derive(state.get("answers", {})),
            "debug": {"orchestrator_error": str(e)},
        }

    return state
