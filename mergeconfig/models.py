import time
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_serializer, field_validator, model_validator

from .errors import ConfigNotFoundError

MergeMethod = Literal["merge", "squash", "rebase"]
MergeOption = Literal["summarize-commits", "use-pr-body-as-message"]

SUMMARIZE_COMMITS = "summarize-commits"
PULL_REQUEST_BODY = "use-pr-body-as-message"


class StrictModel(BaseModel):
    # Unknown keys are rejected at every level
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_keys(cls, data: Any) -> Any:
        # A key written with no value (``labels:``) keeps its default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Signals(StrictModel):
    labels: Tuple[str, ...] = ()
    # Matched against comment bodies and the pull request body
    comment_substrings: Tuple[str, ...] = ()

    @property
    def enabled(self) -> bool:
        return bool(self.labels or self.comment_substrings)


class UpdatePolicy(StrictModel):
    whitelist: Signals = Field(default_factory=Signals)
    blacklist: Signals = Field(default_factory=Signals)


class MergePolicy(StrictModel):
    whitelist: Signals = Field(default_factory=Signals)
    blacklist: Signals = Field(default_factory=Signals)
    method: MergeMethod = "merge"
    options: Mapping[MergeMethod, FrozenSet[MergeOption]] = Field(default_factory=lambda: MappingProxyType({}))
    delete_after_merge: bool = False

    @field_validator("options", mode="before")
    @classmethod
    def _empty_option_sets(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {k: (() if flags is None else flags) for k, flags in v.items()}
        return v

    @field_validator("options")
    @classmethod
    def _read_only_options(cls, v: Mapping) -> Mapping:
        return MappingProxyType(dict(v))

    @field_serializer("options")
    def _dump_options(self, v: Mapping) -> Dict[str, List[str]]:
        return {method: sorted(flags) for method, flags in v.items()}


class Config(StrictModel):
    version: StrictInt
    update: UpdatePolicy = Field(default_factory=UpdatePolicy)
    merge: MergePolicy = Field(default_factory=MergePolicy)

    @field_validator("version")
    @classmethod
    def _check_version(cls, v: int) -> int:
        if v != 1:
            raise ValueError(f"unexpected version '{v}', expected 1")
        return v


class LegacyConfig(StrictModel):
    # Not validated here; unknown modes migrate to an empty policy
    mode: str = ""
    strategy: MergeMethod = "merge"
    delete_after_merge: bool = False


@dataclass(frozen=True)
class RequestContext:
    """Deadline and cancellation signal for one resolution.

    The resolver never inspects it; it is handed unchanged to every fetch.
    """

    deadline: Optional[float] = None  # epoch seconds
    cancel_event: Optional[threading.Event] = None

    @classmethod
    def with_timeout(cls, seconds: float, cancel_event: Optional[threading.Event] = None) -> "RequestContext":
        return cls(deadline=time.time() + seconds, cancel_event=cancel_event)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.time())

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def expired(self) -> bool:
        return self.deadline is not None and time.time() >= self.deadline


@dataclass(frozen=True)
class ResolvedConfig:
    owner: str
    repo: str
    ref: str

    def __post_init__(self) -> None:
        if type(self) is ResolvedConfig:
            raise TypeError("ResolvedConfig is abstract; use FoundConfig or ConfigFailure")

    @property
    def valid(self) -> bool:
        return False

    @property
    def invalid(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo} ref={self.ref}"

    def to_dict(self) -> Dict[str, Any]:
        return {"owner": self.owner, "repo": self.repo, "ref": self.ref}


@dataclass(frozen=True)
class FoundConfig(ResolvedConfig):
    config: Config
    path: str
    legacy: bool = False

    @property
    def valid(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(
            status="found",
            path=self.path,
            legacy=self.legacy,
            config=self.config.model_dump(mode="json"),
        )
        return d


@dataclass(frozen=True)
class ConfigFailure(ResolvedConfig):
    error: ConfigNotFoundError

    @property
    def invalid(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(status="failed", error=str(self.error))
        return d
