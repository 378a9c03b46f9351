"""
Recurring agent endpoints.
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from app.rate_limit import RATE_LIMIT_CREATE, limiter
from app.scrape import get_store
from app.validators import extract_app_slug, is_valid_app_url, is_valid_webhook_url, normalize_app_url
from core.errors import AgentNotFound
from orchestrator import AgentScheduler
from pipeline.store import ReviewStore

logger = logging.getLogger(__name__)
router = APIRouter()


class CreateAgentRequest(BaseModel):
    app_url: str
    run_day: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    webhook_url: str


class AgentStatusRequest(BaseModel):
    status: Literal['active', 'paused', 'stopped']


class RunAgentsRequest(BaseModel):
    agent_id: Optional[str] = None


def get_scheduler(store: ReviewStore = Depends(get_store)) -> AgentScheduler:
    return AgentScheduler(store)


@router.post("/api/agents")
@limiter.limit(RATE_LIMIT_CREATE)
async def create_agent(request: Request, body: CreateAgentRequest, store: ReviewStore = Depends(get_store)):
    """Create an active recurring agent."""
    if not is_valid_app_url(body.app_url):
        raise HTTPException(
            status_code=400,
            detail="Invalid app URL. Expected https://apps.shopify.com/<app-name>",
        )
    if not is_valid_webhook_url(body.webhook_url):
        raise HTTPException(status_code=400, detail="Invalid webhook URL")

    app_url = normalize_app_url(body.app_url)
    agent = store.create_agent(app_url, extract_app_slug(app_url), body.run_day, body.webhook_url.strip())
    logger.info(f"[api/agents] Created agent {agent['id']} for {agent['app_slug']} (run_day={body.run_day})")
    return {"status": "ok", "data": agent, "error": None}


@router.get("/api/agents")
def list_agents(store: ReviewStore = Depends(get_store)):
    return {"status": "ok", "data": store.list_agents(), "error": None}


@router.get("/api/agents/{agent_id}")
def get_agent(agent_id: str, store: ReviewStore = Depends(get_store)):
    agent = store.get_agent(agent_id)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return {"status": "ok", "data": agent, "error": None}


@router.patch("/api/agents/{agent_id}/status")
def update_agent_status(agent_id: str, body: AgentStatusRequest, store: ReviewStore = Depends(get_store)):
    agent = store.set_agent_status(agent_id, body.status)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    logger.info(f"[api/agents] Agent {agent_id} is now {body.status}")
    return {"status": "ok", "data": agent, "error": None}


@router.post("/api/agents/run")
async def run_agents(body: Optional[RunAgentsRequest] = None,
                     scheduler: AgentScheduler = Depends(get_scheduler)):
    """
    Run one agent explicitly, or every active agent due today.

    Per-agent failures are reported in results; they never fail the request.
    """
    agent_id = body.agent_id if body else None
    try:
        return await scheduler.run_due_agents_once(agent_id)
    except AgentNotFound:
        raise HTTPException(status_code=404, detail="Agent not found")
