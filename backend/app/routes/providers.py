"""Provider routes."""

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..auth import CurrentActor
from ..database import Workflow
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.providers")
router = APIRouter(prefix="/providers", tags=["providers"])


class OnlineRequest(BaseModel):
    is_online: bool


class ProviderResponse(BaseModel):
    id: str
    name: str
    provider_type: str
    status: str
    is_online: bool
    capabilities: list[str]
    categories: list[str]


@router.post("/me/online", response_model=ProviderResponse)
@limiter.limit("30/minute")
def set_online(request: Request, body: OnlineRequest, actor: CurrentActor, workflow: Workflow):
    """Go online or offline for offers."""
    logger.info(f"POST /providers/me/online | provider={actor.id} | online={body.is_online}")
    provider = workflow.set_provider_online(actor, body.is_online)
    return ProviderResponse(
        id=provider.id,
        name=provider.name,
        provider_type=provider.provider_type,
        status=provider.status,
        is_online=provider.is_online,
        capabilities=provider.capabilities,
        categories=provider.categories,
    )
