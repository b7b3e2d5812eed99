"""
Dispatch Engine - Runs one pipeline trigger per target of a complete intent.

RESPONSIBILITIES:
1. Order targets: pull-requests first, then repositories (extraction order)
2. Pull-request target: fetch info (branch), then trigger the pipeline
3. Repository target: trigger on the configured default branch
4. Isolate failures: one target failing never stops the others
5. Return exactly one Outcome per target, in input order

Per-target work fans out over a small thread pool. Outcomes are
re-ordered by input index before they are returned, so the rendered
report does not depend on completion order.

On shutdown() no further per-target calls are issued. Calls already in
flight are not retracted (the CI API has no cancel primitive) and the
remaining targets are reported as not attempted.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

from pipebot.models.intent import Intent, PullRequestTarget, RepositoryTarget
from pipebot.services.bitbucket_client import BitbucketClient, BitbucketClientError, build_url
from pipebot.services.intent_validator import validate_intent

load_dotenv()


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_WORKSPACE = os.getenv("BITBUCKET_DEFAULT_WORKSPACE", "")
DEFAULT_BRANCH = os.getenv("BITBUCKET_DEFAULT_BRANCH", "master")
MAX_WORKERS = int(os.getenv("DISPATCH_MAX_WORKERS", "4"))


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# OUTCOME TYPES
# =============================================================================

class TargetType(str, Enum):
    PULL_REQUEST = "pull_request"
    REPOSITORY = "repository"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


Target = Union[PullRequestTarget, RepositoryTarget]


@dataclass
class Outcome:
    """
    Result of one dispatch attempt.

    success: build_url is set
    failed: error_detail is set
    not_attempted: the engine was shutting down before the trigger call
    """
    index: int
    target_type: TargetType
    target: Target
    status: OutcomeStatus
    workspace: str = ""
    repository_slug: str = ""
    branch: str = ""
    build_url: str = ""
    error_type: Optional[str] = None
    error_detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "target_type": self.target_type.value,
            "target": self.target.model_dump(),
            "status": self.status.value,
            "workspace": self.workspace,
            "repository_slug": self.repository_slug,
            "branch": self.branch,
            "build_url": self.build_url,
            "error_type": self.error_type,
            "error_detail": self.error_detail,
        }


def _clean_description(description: str) -> str:
    """Bitbucket returns markdown-escaped descriptions."""
    return description.replace("\\", "")


# =============================================================================
# ENGINE
# =============================================================================

class DispatchEngine:
    """
    Triggers the intent's pipeline once per target.

    Usage:
        engine = DispatchEngine(BitbucketClient())
        outcomes = engine.dispatch(intent)
    """

    def __init__(
        self,
        client: BitbucketClient,
        default_workspace: Optional[str] = None,
        default_branch: Optional[str] = None,
        max_workers: Optional[int] = None,
    ):
        self.client = client
        self.default_workspace = default_workspace if default_workspace is not None else DEFAULT_WORKSPACE
        self.default_branch = default_branch or DEFAULT_BRANCH
        self.max_workers = max(1, max_workers or MAX_WORKERS)
        self._stopping = threading.Event()

    def shutdown(self) -> None:
        """Stop issuing per-target calls."""
        logger.info("Dispatch engine shutting down, no new trigger calls will be issued")
        self._stopping.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._stopping.is_set()

    def dispatch(self, intent: Intent) -> List[Outcome]:
        """
        Run the pipeline for every target of the intent.

        Args:
            intent: A complete intent

        Returns:
            One Outcome per target: pull-requests first, then repositories,
            each group in extraction order.

        Raises:
            IncompleteIntentError: the intent is not complete
        """
        validate_intent(intent)

        plan: List[Target] = [*intent.pull_requests, *intent.repositories]
        logger.info(f"Dispatching pipeline '{intent.pipeline}' to {intent.target_count} target(s)")

        workers = min(self.max_workers, len(plan))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as executor:
            futures = [
                executor.submit(self._run_target, index, target, intent.pipeline)
                for index, target in enumerate(plan)
            ]
            outcomes = [future.result() for future in futures]

        outcomes.sort(key=lambda outcome: outcome.index)
        succeeded = sum(1 for o in outcomes if o.succeeded)
        logger.info(f"Dispatch finished: {succeeded}/{len(outcomes)} target(s) succeeded")
        return outcomes

    # -------------------------------------------------------------------------
    # PER-TARGET WORK
    # -------------------------------------------------------------------------

    def _run_target(self, index: int, target: Target, pipeline: str) -> Outcome:
        if isinstance(target, PullRequestTarget):
            outcome = Outcome(
                index=index,
                target_type=TargetType.PULL_REQUEST,
                target=target,
                status=OutcomeStatus.NOT_ATTEMPTED,
                workspace=target.workspace,
                repository_slug=target.repository_slug,
            )
        else:
            outcome = Outcome(
                index=index,
                target_type=TargetType.REPOSITORY,
                target=target,
                status=OutcomeStatus.NOT_ATTEMPTED,
                workspace=self.default_workspace,
                repository_slug=target.name,
                branch=self.default_branch,
            )

        if self.is_shutting_down:
            logger.warning(f"Skipping {target}: dispatch engine is shutting down")
            return outcome

        try:
            if isinstance(target, PullRequestTarget):
                self._run_pull_request(outcome, target, pipeline)
            else:
                self._run_repository(outcome, pipeline)
        except BitbucketClientError as e:
            logger.error(f"Dispatch to {target} failed: {e}")
            outcome.status = OutcomeStatus.FAILED
            outcome.error_type = e.__class__.__name__
            outcome.error_detail = str(e)
        except Exception as e:
            logger.exception(f"Unexpected error while dispatching to {target}")
            outcome.status = OutcomeStatus.FAILED
            outcome.error_type = e.__class__.__name__
            outcome.error_detail = str(e)

        return outcome

    def _run_pull_request(self, outcome: Outcome, target: PullRequestTarget, pipeline: str) -> None:
        info = self.client.get_pull_request_info(target.workspace, target.repository_slug, target.id)
        outcome.target = target.model_copy(update={
            "title": info.title,
            "description": _clean_description(info.description),
            "branch": info.source_branch,
        })
        outcome.branch = info.source_branch
        logger.info(f"Resolved {target} to branch '{info.source_branch}'")

        if self.is_shutting_down:
            logger.warning(f"Not triggering {target}: dispatch engine is shutting down")
            return

        self._trigger(outcome, pipeline)

    def _run_repository(self, outcome: Outcome, pipeline: str) -> None:
        if not outcome.workspace:
            outcome.status = OutcomeStatus.FAILED
            outcome.error_type = "ConfigurationError"
            outcome.error_detail = "No default workspace is configured for repository targets"
            logger.error(outcome.error_detail)
            return

        self._trigger(outcome, pipeline)

    def _trigger(self, outcome: Outcome, pipeline: str) -> None:
        run = self.client.run_pipeline(
            outcome.workspace,
            outcome.repository_slug,
            outcome.branch,
            pipeline,
        )
        outcome.build_url = build_url(outcome.workspace, outcome.repository_slug, run.build_number)
        outcome.status = OutcomeStatus.SUCCESS
        logger.info(
            f"Pipeline '{pipeline}' started for {outcome.workspace}/{outcome.repository_slug} "
            f"on '{outcome.branch}': build #{run.build_number}"
        )
