"""Tolerant JSON adapters for companion tool output.

Each external shape has one Pydantic model. Unknown fields are ignored so new
tool versions keep parsing; every default is stated next to its field and
carries no business meaning beyond "the tool did not say".
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CLAIM_SCHEMES = ("bead", "workspace", "agent", "release")
VOTE_LGTM = "lgtm"
VOTE_BLOCK = "block"

ModelT = TypeVar("ModelT", bound=BaseModel)


class AdapterError(RuntimeError):
    """Raised when a tool's output cannot be parsed."""

    def __init__(self, tool: str, detail: str) -> None:
        self.tool = tool
        self.detail = detail
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"failed to parse {self.tool} output: {self.detail}"


class _Tolerant(BaseModel):
    model_config = ConfigDict(extra="ignore")


def pattern_id(pattern: str, scheme: str) -> str | None:
    """Return the id segment of ``scheme://project/id`` (or ``agent://id``).

    Example:
        >>> pattern_id("bead://p/bd-1", "bead")
        'bd-1'
        >>> pattern_id("agent://amber-reef", "agent")
        'amber-reef'
        >>> pattern_id("workspace://p/ws1", "bead") is None
        True
    """
    prefix = f"{scheme}://"
    if not pattern.startswith(prefix):
        return None
    rest = pattern[len(prefix) :]
    if scheme == "agent":
        return rest or None
    segments = rest.split("/")
    if scheme == "release":
        return segments[0] or None
    if len(segments) < 2 or not segments[1]:
        return None
    return segments[1]


# --- Claims (``bus claims list --format json``) ---


class Claim(_Tolerant):
    agent: str = ""  # missing agent never matches the caller
    patterns: list[str] = Field(default_factory=list)  # no patterns -> holds nothing
    active: bool = False  # the service omits it for expired claims
    memo: str | None = None  # older services do not report memos
    expires_in_secs: int | None = None  # absent for claims without a TTL

    def ids(self, scheme: str) -> list[str]:
        return [
            value
            for value in (pattern_id(pattern, scheme) for pattern in self.patterns)
            if value is not None
        ]

    def bead_ids(self) -> list[str]:
        return self.ids("bead")

    def workspace_names(self) -> list[str]:
        return self.ids("workspace")


class ClaimsResponse(_Tolerant):
    claims: list[Claim] = Field(default_factory=list)


# --- Workspaces (``maw ws list --format json``) ---


class Workspace(_Tolerant):
    name: str
    is_default: bool = False
    is_current: bool = False
    change_id: str | None = None
    commit_id: str | None = None
    description: str | None = None


class WorkspaceAdvice(_Tolerant):
    level: str = ""
    message: str = ""
    details: Any = None  # free-form; only ever displayed


class WorkspacesResponse(_Tolerant):
    workspaces: list[Workspace] = Field(default_factory=list)
    advice: list[WorkspaceAdvice] = Field(default_factory=list)


# --- Merge pre-flight (``maw ws merge <ws> --check --format json``) ---


class MergeCheckResult(_Tolerant):
    ready: bool  # required: a check that does not say "ready" is not one
    conflicts: list[str] = Field(default_factory=list)
    stale: bool = False


# --- Beads (``br show <id> --json`` / ``br ready --json``) ---


class BeadInfo(_Tolerant):
    id: str
    title: str = ""  # rendered as-is, empty when unknown
    status: str = ""  # empty means "unknown", never "open"
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    priority: int | None = None

    @field_validator("title", "status", mode="before")
    @classmethod
    def normalize_strings(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    @property
    def is_closed(self) -> bool:
        return self.status in {"closed", "done"}


# --- Reviews (``crit reviews list`` / ``crit review <id>``) ---


class ReviewSummary(_Tolerant):
    review_id: str
    title: str | None = None
    status: str = ""
    change_id: str | None = None
    author: str | None = None


class ReviewsListResponse(_Tolerant):
    reviews: list[ReviewSummary] = Field(default_factory=list)


class ReviewVote(_Tolerant):
    reviewer: str
    vote: str
    voted_at: str = ""  # empty sorts before every RFC3339 timestamp

    @field_validator("voted_at", mode="before")
    @classmethod
    def normalize_voted_at(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    @property
    def is_lgtm(self) -> bool:
        return self.vote == VOTE_LGTM

    @property
    def is_block(self) -> bool:
        return self.vote == VOTE_BLOCK


class ReviewDetail(_Tolerant):
    review_id: str
    title: str | None = None
    status: str = ""
    change_id: str | None = None
    votes: list[ReviewVote] = Field(default_factory=list)
    open_thread_count: int = 0


class ReviewComment(_Tolerant):
    author: str = ""
    body: str = ""
    created_at: str | None = None


class ReviewThread(_Tolerant):
    thread_id: str
    file: str | None = None
    line: int | None = None
    resolved: bool = False
    comments: list[ReviewComment] = Field(default_factory=list)


class ReviewDetailResponse(_Tolerant):
    review: ReviewDetail
    threads: list[ReviewThread] = Field(default_factory=list)


# --- Parsers ---


def _load(raw: str, *, tool: str) -> object:
    text = raw.strip()
    if not text:
        raise AdapterError(tool, "empty output")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise AdapterError(tool, str(exc)) from exc


def _validate(model_type: type[ModelT], payload: object, *, tool: str) -> ModelT:
    try:
        return model_type.model_validate(payload)
    except ValidationError as exc:
        raise AdapterError(tool, str(exc)) from exc


def parse_claims(raw: str) -> ClaimsResponse:
    return _validate(ClaimsResponse, _load(raw, tool="bus claims list"), tool="bus claims list")


def parse_workspaces(raw: str) -> WorkspacesResponse:
    return _validate(WorkspacesResponse, _load(raw, tool="maw ws list"), tool="maw ws list")


def parse_merge_check(raw: str) -> MergeCheckResult:
    tool = "maw ws merge --check"
    return _validate(MergeCheckResult, _load(raw, tool=tool), tool=tool)


def parse_bead_show(raw: str) -> BeadInfo:
    """Parse ``br show --json``; the tracker may wrap the issue in a list."""
    tool = "br show"
    payload = _load(raw, tool=tool)
    if isinstance(payload, list):
        if not payload:
            raise AdapterError(tool, "no issue in output")
        payload = payload[0]
    return _validate(BeadInfo, payload, tool=tool)


def parse_bead_list(raw: str) -> list[BeadInfo]:
    tool = "br ready"
    payload = _load(raw, tool=tool)
    if not isinstance(payload, list):
        raise AdapterError(tool, "expected a JSON list")
    return [_validate(BeadInfo, item, tool=tool) for item in payload]


def parse_reviews_list(raw: str) -> ReviewsListResponse:
    tool = "crit reviews list"
    return _validate(ReviewsListResponse, _load(raw, tool=tool), tool=tool)


def parse_review_detail(raw: str) -> ReviewDetailResponse:
    tool = "crit review"
    return _validate(ReviewDetailResponse, _load(raw, tool=tool), tool=tool)
