import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from langgraph.graph import StateGraph, START, END

# Import our modules
from pipeline import settings
from pipeline.state import QualifyState, Answers
from pipeline.nodes.capture import capture
from pipeline.nodes.enrich import enrich
from pipeline.nodes.score import score
from pipeline.nodes.notify import notify, record
from pipeline.normalize import answers_from_flat, answers_from_payload, extract_domain_from_email, normalize_url
from integrations.analytics import analytics_store
from integrations.base import MissingAPIKey
from integrations.cache import cache
from integrations.dispatch import task_queue
from integrations.llm import LLMClient, fallback_summary
from integrations.serp import SerpClient
from integrations.workspaces import WorkspaceNotFound, clean_criteria, workspace_store

# Configure logging
logger.add(os.getenv("LOG_FILE", "logs/app.log"), rotation="1 day", retention="7 days", level="INFO")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await task_queue.start()
    yield
    await task_queue.stop()


# Initialize FastAPI app
app = FastAPI(
    title="Lead Gate",
    description="Lead enrichment and qualification router",
    version="1.0.0",
    lifespan=lifespan,
)


# Build the LangGraph workflow
def build_workflow():
    """Build the lead qualification workflow."""
    workflow = StateGraph(QualifyState)

    # Add nodes
    workflow.add_node("capture", capture)
    workflow.add_node("enrich", enrich)
    workflow.add_node("score", score)
    workflow.add_node("notify", notify)
    workflow.add_node("record", record)

    # Add edges
    workflow.add_edge(START, "capture")
    workflow.add_edge("capture", "enrich")
    workflow.add_edge("enrich", "score")

    # Qualified leads are announced before the outcome is recorded
    def branch_decision(state: QualifyState) -> str:
        if state.get("qualification", {}).get("approved"):
            return "notify"
        return "record"

    workflow.add_conditional_edges(
        "score",
        branch_decision,
        {
            "notify": "notify",
            "record": "record"
        }
    )

    workflow.add_edge("notify", "record")
    workflow.add_edge("record", END)

    return workflow.compile()


app_graph = build_workflow()


async def run_qualification(
    answers: Answers,
    workspace_name: str = "",
    workspace: Optional[Dict[str, Any]] = None,
    sid: Optional[str] = None,
) -> QualifyState:
    """Run one lead through the workflow and return the final state."""
    start_time = time.time()
    initial_state: QualifyState = {
        "sid": sid or answers.get("Email Address") or str(time.time()),
        "answers": answers,
        "workspace_name": workspace_name,
        "workspace": workspace,
        "criteria": clean_criteria(workspace.get("criteria")) if workspace else None,
        "errors": [],
        "notifications": [],
    }
    result = await app_graph.ainvoke(initial_state)
    logger.info(f"Lead {initial_state['sid']} qualified={result['qualification']['approved']} in {time.time() - start_time:.2f}s")
    return result


async def _json_body(req: Request) -> Dict[str, Any]:
    try:
        body = await req.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return body


@app.post("/qualify")
async def qualify(req: Request):
    """
    Qualify a lead against a workspace's criteria.

    Expected payload:
    {
        "email": "jane@acme.com",
        "workspaceName": "acme-demo",
        "company_name": "Acme"          (optional)
    }
    """
    body = await _json_body(req)
    workspace_name = body.get("workspaceName") or body.get("workspace_name") or ""
    if not body.get("email") and not body.get("work_email"):
        raise HTTPException(status_code=400, detail="Missing email")

    workspace = await workspace_store.get_with_cache(workspace_name)
    if not workspace or not workspace.get("criteria"):
        return JSONResponse(status_code=404, content={"error": "Workspace or criteria not found"})

    result = await run_qualification(answers_from_flat(body), workspace_name, workspace)
    return result["qualification"]


@app.get("/r")
async def redirect_lead(request: Request):
    """Qualify from query params and redirect to the booking or fallback page."""
    params = dict(request.query_params)
    email = params.get("email", "")
    workspace_name = params.get("workspace_name", "")

    if not email or not workspace_name:
        logger.warning("Redirect request missing email or workspace_name")
        return RedirectResponse(settings.ERROR_URL)

    workspace = await workspace_store.get_with_cache(workspace_name)
    if not workspace:
        logger.warning(f"Workspace not found: {workspace_name}")
        return RedirectResponse(settings.ERROR_URL)

    result = await run_qualification(answers_from_flat(params), workspace_name, workspace)

    if result["qualification"]["approved"]:
        return RedirectResponse(normalize_url(workspace.get("booking_url"), settings.FALLBACK_SUCCESS_URL))
    return RedirectResponse(normalize_url(workspace.get("success_page_url"), settings.FALLBACK_DISQUALIFY_URL))


@app.post("/webhooks/form")
async def form_webhook(req: Request):
    """
    Form-builder webhook. Accepts either a label/value field list under
    event.data.fields / data.fields, or a flat body with work_email,
    company_name, company_size, company_seats, computers and website.
    """
    body = await _json_body(req)
    sid, answers = answers_from_payload(body)
    if not answers.get("Email Address"):
        return JSONResponse(status_code=400, content={"ok": False, "error": "Missing work_email"})

    workspace_name = req.query_params.get("workspace") or body.get("workspace_name") or ""
    workspace = await workspace_store.get_with_cache(workspace_name) if workspace_name else None
    if workspace_name and not workspace:
        logger.warning(f"Workspace not found: {workspace_name}")
        return JSONResponse(status_code=404, content={"ok": False, "error": "Workspace not found"})

    # thresholds come from workspace config only, never from the caller
    result = await run_qualification(answers, workspace_name, workspace, sid=sid)
    enriched = result.get("enriched", {})
    return {
        "ok": True,
        "sid": sid,
        "decision": result["qualification"],
        "enriched": {
            "derived": enriched.get("derived"),
            "company_enrichment": enriched.get("company_enrichment"),
            "ai_decision": enriched.get("ai_decision"),
            "debug": enriched.get("debug") or None,
        },
    }


@app.post("/ai-enrich")
async def ai_enrich(req: Request):
    """Search-backed company brief with a priority verdict."""
    body = await _json_body(req)
    company_name = (body.get("companyName") or "").strip()
    company_email = (body.get("companyEmail") or "").strip()
    domain = extract_domain_from_email(company_email)
    if not company_name or not domain:
        return JSONResponse(status_code=400, content={"error": "Company name and email are required"}, headers=NO_STORE_HEADERS)

    try:
        serp = SerpClient()
    except MissingAPIKey as e:
        return JSONResponse(status_code=503, content={"error": str(e)}, headers=NO_STORE_HEADERS)

    snippets = await serp.snippets(f"{company_name} company {domain} business", num=5)
    if not snippets:
        return JSONResponse(status_code=404, content={"error": "No search results found for the company"}, headers=NO_STORE_HEADERS)

    try:
        brief = await LLMClient().summarize_company(company_name, domain, snippets)
    except Exception as e:
        logger.warning(f"AI summary failed for {domain}, using fallback: {e}")
        brief = fallback_summary(company_name, snippets)

    brief["sources"] = [s["link"] for s in snippets if s.get("link")]
    return JSONResponse(content=brief, headers=NO_STORE_HEADERS)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "services": {
            "redis": "connected" if await cache.ping() else "disconnected",
            "workflow": "ready"
        }
    }


@app.get("/admin/workspaces/{workspace_name}/summary")
async def workspace_summary(workspace_name: str):
    """Submission and qualification counts for a workspace."""
    return await analytics_store.summary_for_workspace(workspace_name)


@app.put("/admin/workspaces/{workspace_name}/criteria")
async def update_criteria(workspace_name: str, req: Request):
    """Replace a workspace's thresholds and drop its cached config."""
    body = await _json_body(req)
    criteria = clean_criteria(body) or {}
    try:
        workspace = await workspace_store.update(workspace_name, {"criteria": criteria})
    except WorkspaceNotFound:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return {"workspace_name": workspace_name, "criteria": workspace["criteria"]}


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting Lead Gate")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
