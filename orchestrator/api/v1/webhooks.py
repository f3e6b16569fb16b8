import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool

from orchestrator.config import settings
from orchestrator.core.exceptions import ValidationError
from orchestrator.dependencies import get_deployment_service
from orchestrator.external.github_client import GitHubClient
from orchestrator.services.deployment_service import DeploymentService
from orchestrator.services.trigger_ingestion import Rejected

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/github", status_code=status.HTTP_202_ACCEPTED)
async def github_webhook(
        request: Request,
        x_github_event: Optional[str] = Header(None),
        x_hub_signature_256: Optional[str] = Header(None),
        service: DeploymentService = Depends(get_deployment_service)
):
    """Événements push et workflow_run du fournisseur git"""
    body = await request.body()
    if settings.GITHUB_WEBHOOK_SECRET:
        GitHubClient.verify_signature(settings.GITHUB_WEBHOOK_SECRET, body, x_hub_signature_256)

    try:
        payload = json.loads(body or b"{}")
    except ValueError as e:
        raise ValidationError("Payload JSON invalide") from e

    event = GitHubClient.parse_event(x_github_event or "", payload)
    if event is None:
        return {"accepted": False, "reason": f"Événement '{x_github_event}' ignoré"}

    results = await run_in_threadpool(service.handle_git_event, event)
    if not results:
        return {"accepted": False, "reason": "Aucune app ne suit ce dépôt"}

    items = []
    for app_id, result in results:
        if isinstance(result, Rejected):
            items.append({"app_id": app_id, "accepted": False, "reason": result.reason})
        else:
            items.append({"app_id": app_id, "accepted": True, "deployment_id": result.id})

    accepted = any(item["accepted"] for item in items)
    response = {"accepted": accepted, "results": items}
    if not accepted:
        response["reason"] = items[0]["reason"]
    return response
