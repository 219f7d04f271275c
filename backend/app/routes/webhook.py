"""
Hosting-provider webhooks that trigger grading of pushed branches and pull requests.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from app.core.dependencies import get_grading_service, get_instructions_provider
from app.core.errors import GradingError, UpstreamError, ValidationError
from app.models.grading import WebhookAck
from app.models.records import GradingRequest
from app.services.grading_service import GradingService
from app.services.instructions_provider import InstructionsProvider

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_PROVIDERS = {"github"}
PULL_REQUEST_ACTIONS = {"opened", "synchronize", "reopened"}
BRANCH_REF_PREFIX = "refs/heads/"


def verify_signature(secret: str, body: bytes, signature_header: Optional[str]) -> bool:
    """Check GitHub's ``X-Hub-Signature-256`` header against the raw body."""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"sha256={expected}", signature_header)


def decode_payload(body: bytes, content_type: str) -> Dict[str, Any]:
    try:
        if content_type.startswith("application/x-www-form-urlencoded"):
            form = parse_qs(body.decode("utf-8"))
            payload = json.loads(form["payload"][0])
        else:
            payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, IndexError) as e:
        raise ValidationError("Malformed webhook payload") from e
    if not isinstance(payload, dict):
        raise ValidationError("Malformed webhook payload")
    return payload


def _require_str(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Webhook payload is missing {field}")
    return value


def _section(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = payload.get(name)
    if not isinstance(value, dict):
        raise ValidationError(f"Webhook payload is missing {name}")
    return value


def extract_github_submission(event: str, payload: Dict[str, Any]) -> Optional[GradingRequest]:
    """
    Map a GitHub event to a grading request.

    Returns None for events that are valid but not gradable (tag pushes,
    branch deletions, closed pull requests, other event types) and raises
    ValidationError for payloads missing the fields the event requires.
    """
    if event == "push":
        ref = _require_str(payload.get("ref"), "ref")
        if payload.get("deleted") or not ref.startswith(BRANCH_REF_PREFIX):
            return None
        repository = _section(payload, "repository")
        pusher = payload.get("pusher") if isinstance(payload.get("pusher"), dict) else {}
        sender = payload.get("sender") if isinstance(payload.get("sender"), dict) else {}
        return GradingRequest(
            repository_reference=_require_str(repository.get("html_url"), "repository.html_url"),
            branch_name=ref[len(BRANCH_REF_PREFIX):],
            student_identifier=pusher.get("name") or sender.get("login"),
        )

    if event == "pull_request":
        action = _require_str(payload.get("action"), "action")
        if action not in PULL_REQUEST_ACTIONS:
            return None
        pull_request = _section(payload, "pull_request")
        head = _section(pull_request, "head")
        head_repo = head.get("repo") if isinstance(head.get("repo"), dict) else {}
        repo_url = head_repo.get("html_url") or _section(payload, "repository").get("html_url")
        user = pull_request.get("user") if isinstance(pull_request.get("user"), dict) else {}
        return GradingRequest(
            repository_reference=_require_str(repo_url, "repository.html_url"),
            branch_name=_require_str(head.get("ref"), "pull_request.head.ref"),
            student_identifier=user.get("login"),
        )

    return None


async def run_webhook_grading(service: GradingService, instructions: InstructionsProvider,
                              submission: GradingRequest) -> None:
    """Background grading run; outcomes are only logged."""
    try:
        submission.instructions = await instructions.get_instructions(
            submission.repository_reference, submission.branch_name)
    except UpstreamError as e:
        # A cached review can still be served without instructions
        logger.warning("Could not load grading instructions: %s", e)

    try:
        outcome = await service.grade(submission)
    except ValidationError as e:
        logger.warning("Webhook grading skipped for %s@%s: %s",
                       submission.repository_reference, submission.branch_name, e)
        return
    except GradingError as e:
        logger.error("Webhook grading failed for %s@%s: %s",
                     submission.repository_reference, submission.branch_name, e)
        return
    except Exception:
        logger.exception("Unexpected error during webhook grading")
        return

    logger.info("Webhook grading finished: review %s (%s) score %s",
                outcome.record.id, outcome.provenance.value, outcome.record.score)


@router.post("/{provider}", response_model=WebhookAck)
async def receive_webhook(provider: str, request: Request, background_tasks: BackgroundTasks,
                          settings: Settings = Depends(get_settings),
                          service: GradingService = Depends(get_grading_service),
                          instructions: InstructionsProvider = Depends(get_instructions_provider)):
    if provider not in SUPPORTED_PROVIDERS:
        return JSONResponse(status_code=404,
                            content={"success": False, "error": f"Unsupported provider: {provider}"})

    body = await request.body()
    if settings.github_webhook_secret and not verify_signature(
            settings.github_webhook_secret, body, request.headers.get("X-Hub-Signature-256")):
        return JSONResponse(status_code=401,
                            content={"success": False, "error": "Invalid webhook signature"})

    event = request.headers.get("X-GitHub-Event", "")
    payload = decode_payload(body, request.headers.get("content-type", ""))

    if event == "ping":
        return WebhookAck(status="pong", message=payload.get("zen"))

    submission = extract_github_submission(event, payload)
    if submission is None:
        logger.info("Ignoring GitHub %s event", event or "unknown")
        return WebhookAck(status="ignored", message=f"Event '{event}' does not trigger grading")

    logger.info("Queued grading for %s@%s from GitHub %s event",
                submission.repository_reference, submission.branch_name, event)
    background_tasks.add_task(run_webhook_grading, service, instructions, submission)
    return WebhookAck(
        status="queued",
        repository=submission.repository_reference,
        branch=submission.branch_name,
        student=submission.student_identifier,
    )
