"""
Intent Model - Canonical intent contract for the pipeline runner.

This module defines the structured representation of a chat command
after it has been parsed from free-form text. It serves as the contract
between the extraction layer and the dispatch layer.

Responsibilities:
- Define the target types (pull-request, repository)
- Define the Intent with its completeness rule
- Enforce structural constraints via validation
- NO extraction logic
- NO network access
"""

import re
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


PIPELINE_NAME_PATTERN = re.compile(r"^[a-z0-9_-]+$")
# Bitbucket ids are signed 64-bit integers
MAX_PULL_REQUEST_ID = 2**63 - 1


class Slot(str, Enum):
    """
    Required pieces of an Intent that a clarifying question can fill.
    """
    DESTINATION = "destination"   # pull-requests and/or repositories
    PIPELINE = "pipeline"         # the custom pipeline to run


class PullRequestTarget(BaseModel):
    """
    A pull-request the pipeline should run against.

    Identity fields (workspace, repository_slug, id) come from the link in
    the chat message. title/description/branch are filled in at dispatch
    time from the pull-request info lookup.

    Two targets are equal when workspace, slug and id match.
    """
    workspace: str = Field(..., min_length=1)
    repository_slug: str = Field(..., min_length=1)
    id: int = Field(..., ge=0, le=MAX_PULL_REQUEST_ID)
    title: str = ""
    description: str = ""
    branch: str = ""

    model_config = ConfigDict(extra="forbid")

    @property
    def key(self) -> tuple:
        return (self.workspace, self.repository_slug, self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PullRequestTarget):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return f"{self.workspace}/{self.repository_slug}#{self.id}"


class RepositoryTarget(BaseModel):
    """
    A repository the pipeline should run against.

    Workspace and branch are not stored here: they come from the
    configured defaults when the target is dispatched.
    """
    name: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def __str__(self) -> str:
        return self.name


class Intent(BaseModel):
    """
    The fully-resolved instruction: one pipeline, many targets.

    An Intent may be built incomplete (that is how the extractor reports
    missing information), but only complete intents are dispatched.

    Example:
        # "start staging-deploy https://bitbucket.org/john/test-repo/pull-requests/1"
        Intent(
            pipeline="staging-deploy",
            pull_requests=[PullRequestTarget(workspace="john", repository_slug="test-repo", id=1)],
        )
    """
    pipeline: str = Field(
        default="",
        description="Custom pipeline name, empty when not yet known"
    )
    pull_requests: List[PullRequestTarget] = Field(default_factory=list)
    repositories: List[RepositoryTarget] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("pipeline")
    @classmethod
    def validate_pipeline_name(cls, value: str) -> str:
        """Pipeline is either empty (unknown) or a valid identifier."""
        if value and not PIPELINE_NAME_PATTERN.match(value):
            raise ValueError(
                f"Pipeline name '{value}' may only contain lowercase letters, "
                "digits, hyphens and underscores"
            )
        return value

    @property
    def has_targets(self) -> bool:
        return bool(self.pull_requests or self.repositories)

    @property
    def target_count(self) -> int:
        return len(self.pull_requests) + len(self.repositories)

    def is_complete(self) -> bool:
        return self.pipeline != "" and self.has_targets

    def missing_slots(self) -> List[Slot]:
        """Slots still to be asked for, in question order."""
        missing = []
        if not self.has_targets:
            missing.append(Slot.DESTINATION)
        if not self.pipeline:
            missing.append(Slot.PIPELINE)
        return missing
