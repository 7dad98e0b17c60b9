import time
import base64
import binascii
import logging
from typing import Any, Dict, Optional, List
import httpx
import jwt
from datetime import datetime, timedelta, timezone

from .config import SETTINGS
from .errors import FetchError
from .metrics import github_api_requests_total, github_api_latency_seconds
from .models import RequestContext

logger = logging.getLogger(__name__)


def _safe_url(url: str) -> str:
    try:
        u = httpx.URL(url)
        # remove query to avoid leaking params
        return str(u.copy_with(query=None))
    except Exception:
        return url.split("?", 1)[0]


def _param_keys(d: Optional[Dict[str, Any]]) -> List[str]:
    return sorted((d or {}).keys())


class GitHubClient:
    """Minimal GitHub App client: installation tokens plus the contents API."""

    def __init__(self, installation_id: int):
        self.installation_id = installation_id
        self._token: Optional[str] = None
        self._token_expiry: float = 0.0
        self.base_url = SETTINGS.github_api_url
        self.app_id = SETTINGS.app_id
        self.private_key_pem = SETTINGS.app_private_key.encode("utf-8")

    def _app_jwt(self) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "iat": int(now.timestamp()) - 60,
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key_pem, algorithm="RS256")

    def _ensure_token(self) -> None:
        if self._token and time.time() < self._token_expiry - 60:
            return
        jwt_ = self._app_jwt()
        url = f"{self.base_url}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {jwt_}",
            "Accept": "application/vnd.github+json",
        }
        endpoint = "POST /app/installations/{id}/access_tokens"
        start = time.perf_counter()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "github.request: method=POST path=%s installation=%s phase=token_exchange",
                _safe_url(url),
                self.installation_id,
            )
        resp = httpx.post(url, headers=headers, timeout=30)
        duration = time.perf_counter() - start
        github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
        github_api_requests_total.labels(endpoint=endpoint, status=str(resp.status_code)).inc()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "github.response: method=POST path=%s status=%s duration_ms=%d installation=%s phase=token_exchange",
                _safe_url(url),
                resp.status_code,
                int(duration * 1000),
                self.installation_id,
            )
        resp.raise_for_status()
        data = resp.json()
        self._token = data.get("token")
        expires_at = data.get("expires_at")  # e.g., 2024-01-01T00:00:00Z
        if expires_at:
            dt = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
            self._token_expiry = dt.timestamp()
        else:
            self._token_expiry = time.time() + 3600

    def _headers(self) -> Dict[str, str]:
        self._ensure_token()
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "mergeconfig/1.0",
        }

    def _timeout(self, ctx: Optional[RequestContext]) -> float:
        timeout = SETTINGS.http_timeout_seconds
        remaining = ctx.remaining() if ctx is not None else None
        if remaining is not None:
            timeout = min(timeout, remaining)
        return timeout

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        ctx: Optional[RequestContext] = None,
    ) -> httpx.Response:
        """Issue an API request, retrying transient failures.

        Network errors, 5xx and rate limiting (403/429 on GET) are retried up to
        ``SETTINGS.max_attempts`` times. Any other status is returned to the
        caller. Raises FetchError when the request cannot complete, including
        when ``ctx`` is cancelled or its deadline passes.
        """
        url = path if path.startswith("http") else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        endpoint = f"{method} {path if path.startswith('/') else '/' + path}"

        def should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
            if exc is not None:
                return True
            if resp is None:
                return False
            status = resp.status_code
            if status >= 500:
                return True
            if status in (429, 403) and method.upper() == "GET":
                return True
            return False

        attempts = 0
        while True:
            attempts += 1
            if ctx is not None and ctx.cancelled():
                raise FetchError(path, "request cancelled")
            if ctx is not None and ctx.expired():
                raise FetchError(path, "deadline exceeded")
            try:
                headers = self._headers()
            except (httpx.HTTPError, jwt.PyJWTError, ValueError, KeyError, TypeError) as e:
                raise FetchError(path, f"installation token exchange failed: {e}") from e
            start = time.perf_counter()
            exc: Optional[Exception] = None
            resp: Optional[httpx.Response] = None
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "github.request: method=%s path=%s installation=%s params=%s attempt=%s",
                    method.upper(),
                    _safe_url(url),
                    self.installation_id,
                    _param_keys(params),
                    attempts,
                )
            try:
                resp = httpx.request(method, url, headers=headers, params=params, timeout=self._timeout(ctx))
            except (httpx.TimeoutException, httpx.TransportError) as e:
                exc = e
            duration = time.perf_counter() - start
            status_label = str(resp.status_code) if resp is not None else "exc"
            github_api_latency_seconds.labels(endpoint=endpoint).observe(duration)
            github_api_requests_total.labels(endpoint=endpoint, status=status_label).inc()
            if logger.isEnabledFor(logging.DEBUG):
                if resp is not None:
                    logger.debug(
                        "github.response: method=%s path=%s status=%s duration_ms=%d installation=%s rl_remaining=%s rl_reset=%s attempt=%s",
                        method.upper(),
                        _safe_url(url),
                        resp.status_code,
                        int(duration * 1000),
                        self.installation_id,
                        resp.headers.get("X-RateLimit-Remaining"),
                        resp.headers.get("X-RateLimit-Reset"),
                        attempts,
                    )
                else:
                    logger.debug(
                        "github.response_error: method=%s path=%s error=%s duration_ms=%d installation=%s attempt=%s",
                        method.upper(),
                        _safe_url(url),
                        exc,
                        int(duration * 1000),
                        self.installation_id,
                        attempts,
                    )
            if not should_retry(resp, exc) or attempts >= SETTINGS.max_attempts:
                if exc is not None:
                    raise FetchError(path, str(exc)) from exc
                return resp  # type: ignore
            # sleep with exponential backoff, never past the caller's deadline
            sleep_s = min(
                SETTINGS.backoff_base_seconds * (SETTINGS.backoff_factor ** (attempts - 1)),
                SETTINGS.max_backoff_seconds,
            )
            remaining = ctx.remaining() if ctx is not None else None
            if remaining is not None and remaining <= sleep_s:
                if exc is not None:
                    raise FetchError(path, f"deadline exceeded after {exc}") from exc
                return resp  # type: ignore
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "github.retry: method=%s path=%s sleep_seconds=%s attempt=%s installation=%s",
                    method.upper(),
                    _safe_url(url),
                    sleep_s,
                    attempts,
                    self.installation_id,
                )
            time.sleep(sleep_s)

    def fetch_file(
        self, ctx: Optional[RequestContext], owner: str, repo: str, ref: str, path: str
    ) -> Optional[bytes]:
        """Return the raw content of ``path`` at ``ref``.

        Returns None when the path does not exist or is not a regular file.
        Raises FetchError for any other failure.
        """
        logger.debug("config.fetch: owner=%s repo=%s path=%s ref=%s", owner, repo, path, ref)
        r = self.request("GET", f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}", params={"ref": ref}, ctx=ctx)
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise FetchError(path, f"unexpected status {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise FetchError(path, "response is not valid JSON") from e
        # A directory comes back as a list of entries
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            return None
        encoding = data.get("encoding")
        if encoding != "base64":
            raise FetchError(path, f"unsupported content encoding: {encoding}")
        try:
            return base64.b64decode(data.get("content") or "")
        except (binascii.Error, ValueError) as e:
            raise FetchError(path, "failed to decode content") from e
