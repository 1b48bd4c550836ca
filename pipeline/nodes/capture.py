from loguru import logger

from pipeline.normalize import EMAIL_ADDRESS, answers_from_payload
from pipeline.state import QualifyState


async def capture(state: QualifyState) -> QualifyState:
    """Normalize the inbound payload into Answers."""
    if not state.get("answers"):
        sid, answers = answers_from_payload(state.get("raw", {}))
        state["answers"] = answers
        state.setdefault("sid", sid)

    if not state["answers"].get(EMAIL_ADDRESS):
        state.setdefault("errors", []).append("Missing email address")

    logger.info(f"Capture completed for {state.get('sid')}: {state['answers'].get(EMAIL_ADDRESS) or 'no email'}")
    return state
