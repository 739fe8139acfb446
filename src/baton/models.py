"""Pydantic models for Baton project configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProjectSection(BaseModel):
    """Project identification metadata.

    Attributes:
        name: Project name used in claim URIs and announcement channels.
        default_agent: Agent name used when no flag or environment override
            is present. Defaults to ``<name>-dev``.
        channel: Announcement channel. Defaults to the project name.

    Example:
        >>> ProjectSection(name="myapp").resolved_agent()
        'myapp-dev'
    """

    model_config = ConfigDict(extra="allow")

    name: str
    default_agent: str | None = None
    channel: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("default_agent", "channel", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return value

    def resolved_agent(self) -> str:
        return self.default_agent or f"{self.name}-dev"

    def resolved_channel(self, project: str | None = None) -> str:
        return self.channel or project or self.name


class ReviewSection(BaseModel):
    """Review gate policy.

    Attributes:
        enabled: Whether finish/merge require an approved review.
        reviewers: Reviewer role names; the reviewer identity for a role is
            ``<project>-<role>``.

    Example:
        >>> ReviewSection(enabled=True, reviewers=["security", " "]).reviewers
        ['security']
    """

    model_config = ConfigDict(extra="allow")

    enabled: bool = False
    reviewers: list[str] = Field(default_factory=list)

    @field_validator("reviewers", mode="before")
    @classmethod
    def normalize_reviewers(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value


class ProtocolSection(BaseModel):
    """Timeouts and lease settings for protocol commands.

    Example:
        >>> ProtocolSection().merge_lease_ttl_seconds
        120
    """

    model_config = ConfigDict(extra="allow")

    command_timeout_seconds: float = 30.0
    step_timeout_seconds: float = 600.0
    merge_lease_ttl_seconds: int = 120
    merge_lock_timeout_seconds: float = 300.0


class BatonConfig(BaseModel):
    """Top-level ``.baton.json`` configuration.

    Example:
        >>> config = BatonConfig.model_validate(
        ...     {
        ...         "project": {"name": "myapp"},
        ...         "review": {"enabled": True, "reviewers": ["security"]},
        ...     }
        ... )
        >>> config.required_reviewers("myapp")
        ['myapp-security']
    """

    model_config = ConfigDict(extra="allow")

    version: str | None = None
    project: ProjectSection
    review: ReviewSection = Field(default_factory=ReviewSection)
    push_main: bool = False
    protocol: ProtocolSection = Field(default_factory=ProtocolSection)

    def required_reviewers(self, project: str) -> list[str]:
        """Return reviewer identities required by the review gate."""
        return [f"{project}-{role}" for role in self.review.reviewers]

    def review_required(self, project: str) -> bool:
        return self.review.enabled and bool(self.required_reviewers(project))
