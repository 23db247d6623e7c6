"""Evidence routes: serve photos behind signed, expiring URLs."""

from fastapi import APIRouter, HTTPException, Request, Response, status

from ..database import Workflow
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.evidence")
router = APIRouter(prefix="/evidence", tags=["evidence"])


@router.get("/{key:path}")
@limiter.limit("120/minute")
def get_evidence(request: Request, key: str, workflow: Workflow):
    """Return a stored photo if the URL's signature is valid and unexpired."""
    if workflow.evidence is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evidence storage disabled")
    granted = workflow.evidence.verify_url(str(request.url))
    if granted != key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Signature does not match")
    return Response(content=workflow.evidence.read(key), media_type="application/octet-stream")
