import hashlib
import hmac
import logging
from typing import Any, Dict, Optional, Tuple

import requests
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from orchestrator.api.schemas.config import TriggerEvent
from orchestrator.core.exceptions import ValidationError, WebhookSignatureError
from orchestrator.services.trigger_ingestion import GitEvent

logger = logging.getLogger(__name__)


class GitHubClient:
    def __init__(self, api_url: str = "https://api.github.com", token: Optional[str] = None):
        self.api_url = api_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/vnd.github+json"
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=5),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def latest_commit(self, repository_id: int, branch: str) -> Tuple[str, str]:
        """Retourne (sha, message) de la tête de branche"""
        response = self.session.get(
            f"{self.api_url}/repositories/{repository_id}/commits/{branch}",
            timeout=10,
        )
        if response.status_code == 404:
            raise ValidationError(f"Branche '{branch}' introuvable sur le dépôt {repository_id}")
        response.raise_for_status()
        data = response.json()
        return data["sha"], data.get("commit", {}).get("message", "")

    @staticmethod
    def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> None:
        """Vérifie l'en-tête X-Hub-Signature-256"""
        if not signature or not signature.startswith("sha256="):
            raise WebhookSignatureError("Signature du webhook absente")
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature[len("sha256="):]):
            raise WebhookSignatureError("Signature du webhook invalide")

    @staticmethod
    def parse_event(event_name: str, payload: Dict[str, Any]) -> Optional[GitEvent]:
        """Extrait un GitEvent d'un payload GitHub, None pour les événements non gérés"""
        repository_id = (payload.get("repository") or {}).get("id")
        if repository_id is None:
            return None

        if event_name == "push":
            ref = payload.get("ref", "")
            if not ref.startswith("refs/heads/"):
                return None
            head = payload.get("head_commit") or {}
            return GitEvent(
                event=TriggerEvent.PUSH,
                repository_id=repository_id,
                branch=ref[len("refs/heads/"):],
                commit_hash=head.get("id") or payload.get("after"),
                commit_message=head.get("message"),
            )

        if event_name == "workflow_run":
            run = payload.get("workflow_run") or {}
            return GitEvent(
                event=TriggerEvent.WORKFLOW_RUN,
                repository_id=repository_id,
                branch=run.get("head_branch") or "",
                commit_hash=run.get("head_sha"),
                commit_message=(run.get("head_commit") or {}).get("message"),
                action=payload.get("action"),
                workflow_id=run.get("workflow_id"),
                workflow_run_id=run.get("id"),
                conclusion=run.get("conclusion"),
            )

        return None
