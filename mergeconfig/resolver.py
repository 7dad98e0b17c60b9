import logging
from typing import Any, Dict, Optional, Protocol, Sequence

from .config import SETTINGS
from .decoding import decode_current, decode_legacy
from .errors import ConfigDecodeError, ConfigNotFoundError, FetchError
from .metrics import config_fetch_total, config_resolution_seconds, config_resolutions_total
from .migration import migrate_legacy
from .models import ConfigFailure, FoundConfig, RequestContext, ResolvedConfig

logger = logging.getLogger(__name__)


class ContentAccessor(Protocol):
    def fetch_file(
        self, ctx: Optional[RequestContext], owner: str, repo: str, ref: str, path: str
    ) -> Optional[bytes]:
        """Return file bytes, None if absent, or raise FetchError."""
        ...


class ConfigResolver:
    """Finds the merge configuration for a repository at a given ref.

    The v1 document at ``primary_path`` always wins when it is valid. Otherwise
    each of ``legacy_paths`` is tried in order and the first valid legacy
    document is migrated to v1. Lookups are sequential so that precedence
    holds and a valid v1 document never costs extra requests.
    """

    def __init__(self, primary_path: str, legacy_paths: Sequence[str] = ()):
        if not primary_path:
            raise ValueError("primary_path is required")
        self.primary_path = primary_path
        self.legacy_paths = list(legacy_paths)

    @classmethod
    def from_settings(cls) -> "ConfigResolver":
        return cls(SETTINGS.config_path, SETTINGS.legacy_config_paths)

    def resolve(
        self,
        ctx: Optional[RequestContext],
        accessor: ContentAccessor,
        owner: str,
        repo: str,
        ref: str,
    ) -> ResolvedConfig:
        """Resolve the configuration for ``owner/repo`` at ``ref``.

        Only raises for invalid arguments. Missing files, fetch errors and
        invalid documents are not errors here; when no candidate is usable the
        result is a ConfigFailure.
        """
        for name, value in (("owner", owner), ("repo", repo), ("ref", ref)):
            if not value:
                raise ValueError(f"{name} is required")

        with config_resolution_seconds.time():
            found = self._resolve_primary(ctx, accessor, owner, repo, ref)
            if found is None:
                found = self._resolve_legacy(ctx, accessor, owner, repo, ref)

        if found is not None:
            config_resolutions_total.labels(source="v0" if found.legacy else "v1").inc()
            return found

        config_resolutions_total.labels(source="none").inc()
        logger.debug("config.resolve: no valid configuration for %s/%s ref=%s", owner, repo, ref)
        return ConfigFailure(
            owner=owner,
            repo=repo,
            ref=ref,
            error=ConfigNotFoundError("Unable to find valid v1 or v0 configuration"),
        )

    def resolve_for_pull_request(
        self, ctx: Optional[RequestContext], accessor: ContentAccessor, pr: Dict[str, Any]
    ) -> ResolvedConfig:
        """Resolve against the base branch of a pull request payload."""
        base = pr.get("base") or {}
        base_repo = base.get("repo") or {}
        owner = (base_repo.get("owner") or {}).get("login")
        return self.resolve(ctx, accessor, owner, base_repo.get("name"), base.get("ref"))

    def _fetch(
        self, ctx: Optional[RequestContext], accessor: ContentAccessor, owner: str, repo: str, ref: str, path: str, kind: str
    ) -> Optional[bytes]:
        try:
            content = accessor.fetch_file(ctx, owner, repo, ref, path)
        except FetchError as e:
            config_fetch_total.labels(kind=kind, result="error").inc()
            logger.debug("config.fetch_failed: kind=%s path=%s ref=%s error=%s", kind, path, ref, e)
            return None
        config_fetch_total.labels(kind=kind, result="missing" if content is None else "found").inc()
        return content

    def _resolve_primary(
        self, ctx: Optional[RequestContext], accessor: ContentAccessor, owner: str, repo: str, ref: str
    ) -> Optional[FoundConfig]:
        content = self._fetch(ctx, accessor, owner, repo, ref, self.primary_path, "v1")
        if content is None:
            return None
        try:
            config = decode_current(content)
        except ConfigDecodeError as e:
            logger.debug("config.invalid: kind=v1 path=%s ref=%s error=%s", self.primary_path, ref, e)
            return None
        return FoundConfig(owner=owner, repo=repo, ref=ref, config=config, path=self.primary_path)

    def _resolve_legacy(
        self, ctx: Optional[RequestContext], accessor: ContentAccessor, owner: str, repo: str, ref: str
    ) -> Optional[FoundConfig]:
        for path in self.legacy_paths:
            logger.debug("config.fallback: kind=v0 path=%s ref=%s", path, ref)
            content = self._fetch(ctx, accessor, owner, repo, ref, path, "v0")
            if content is None:
                continue
            try:
                legacy = decode_legacy(content)
            except ConfigDecodeError as e:
                logger.debug("config.invalid: kind=v0 path=%s ref=%s error=%s", path, ref, e)
                continue
            config = migrate_legacy(legacy)
            logger.debug("config.found: kind=v0 path=%s ref=%s method=%s", path, ref, config.merge.method)
            return FoundConfig(owner=owner, repo=repo, ref=ref, config=config, path=path, legacy=True)
        return None
