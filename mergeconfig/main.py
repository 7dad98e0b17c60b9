import hmac
import hashlib
import json
import os
import logging
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request, Response, Header, HTTPException
from fastapi.concurrency import run_in_threadpool

from .config import SETTINGS
from .metrics import (
    metrics_response,
    webhook_requests_total,
    webhook_invalid_signatures_total,
)
from .github import GitHubClient
from .models import RequestContext
from .resolver import ConfigResolver

logging.basicConfig(level=SETTINGS.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Merge Configuration Service", version=SETTINGS.service_version)


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "version": SETTINGS.service_version}


@app.get("/readyz")
async def readyz():
    return {"status": "ready"}


@app.get("/metrics")
async def metrics():
    content_type, data = metrics_response()
    return Response(content=data, media_type=content_type)


def verify_signature(secret: str, body: bytes, signature256: Optional[str]) -> bool:
    if not signature256:
        return False
    try:
        algo, sig = signature256.split("=", 1)
        if algo != "sha256":
            return False
    except ValueError:
        return False
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    expected = mac.hexdigest()
    return hmac.compare_digest(expected, sig)


def _context() -> RequestContext:
    return RequestContext.with_timeout(SETTINGS.resolve_timeout_seconds)


def _resolve(installation_id: int, owner: str, repo: str, ref: str) -> Dict[str, Any]:
    resolver = ConfigResolver.from_settings()
    result = resolver.resolve(_context(), GitHubClient(installation_id), owner, repo, ref)
    logger.debug("config.resolved: %s valid=%s", result, result.valid)
    return result.to_dict()


def _resolve_pull_request(installation_id: int, pr: Dict[str, Any]) -> Dict[str, Any]:
    resolver = ConfigResolver.from_settings()
    result = resolver.resolve_for_pull_request(_context(), GitHubClient(installation_id), pr)
    logger.debug("config.resolved: %s pr=%s valid=%s", result, pr.get("number"), result.valid)
    return result.to_dict()


@app.get("/repos/{owner}/{repo}/config")
async def repo_config(owner: str, repo: str, ref: str, installation_id: int):
    try:
        return await run_in_threadpool(_resolve, installation_id, owner, repo, ref)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/webhook")
async def webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: Optional[str] = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256"),
):
    event = x_github_event or "unknown"
    action = "unknown"
    body = await request.body()

    # Resolve secret at request-time to honor test env overrides
    secret = (SETTINGS.webhook_secret or os.getenv("WEBHOOK_SECRET", "")).strip()
    if not secret or not verify_signature(secret, body, x_hub_signature_256):
        webhook_invalid_signatures_total.inc()
        webhook_requests_total.labels(event=event, action=action, code=str(401)).inc()
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except ValueError:
        webhook_requests_total.labels(event=event, action=action, code=str(400)).inc()
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    action = payload.get("action", "unknown")
    pr = payload.get("pull_request") if event == "pull_request" else None
    inst = (payload.get("installation") or {}).get("id")
    if not (pr and inst):
        webhook_requests_total.labels(event=event, action=action, code=str(202)).inc()
        return Response(status_code=202)

    logger.debug(
        "webhook: delivery=%s event=%s action=%s pr=%s installation=%s",
        x_github_delivery,
        event,
        action,
        pr.get("number"),
        inst,
    )
    try:
        result = await run_in_threadpool(_resolve_pull_request, int(inst), pr)
    except ValueError as e:
        webhook_requests_total.labels(event=event, action=action, code=str(400)).inc()
        raise HTTPException(status_code=400, detail=f"Invalid pull request payload: {e}")
    webhook_requests_total.labels(event=event, action=action, code=str(200)).inc()
    return result
