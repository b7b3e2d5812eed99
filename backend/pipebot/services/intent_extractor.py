"""
Intent Extractor - Lexical grammar for chat commands.

This module is a PARSER ADAPTER between:
- Free-form chat text (unstructured input)
- Intent model (structured output, possibly incomplete)

GRAMMAR (one named-capture rule per entity):
- Pull-request:  any link with the path .../<workspace>/<slug>/pull-requests/<id>
- Repository:    the keyword "repository" followed by a name token
- Pipeline:      the token after a leading "start" or "run" keyword

DESIGN PRINCIPLES:
- Rules are independent and unit-testable in isolation
- Multiple pull-requests and repositories per message, one pipeline
- Hard fail only on a pull-request link that cannot be parsed
- A missing pipeline is an empty string, never an error

This file does NOT:
- Decide whether the intent is complete (that's intent_validator)
- Ask clarifying questions (that's conversation_coordinator)
- Talk to the CI API
"""

import logging
import re
from typing import Dict, Iterable, List
from urllib.parse import urlsplit

from pipebot.models.intent import (
    MAX_PULL_REQUEST_ID,
    PIPELINE_NAME_PATTERN,
    Intent,
    PullRequestTarget,
    RepositoryTarget,
    Slot,
)
from pipebot.services.intent_errors import InvalidPipelineNameError, MalformedReferenceError


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# GRAMMAR
# =============================================================================

# Chat clients wrap links as <url> or <url|label>
URL_PATTERN = re.compile(r"https?://[^\s<>|]+", re.IGNORECASE)

PULL_REQUEST_PATH_PATTERN = re.compile(
    r"/(?P<workspace>[^/]+)/(?P<repository_slug>[^/]+)/pull-requests"
    r"(?:/(?P<pull_request_id>[^/]*))?(?:/|$)",
    re.IGNORECASE,
)

PULL_REQUEST_ID_PATTERN = re.compile(r"^\d+$", re.ASCII)

REPOSITORY_PATTERN = re.compile(
    r"\brepository\s+(?P<repository>[a-z0-9_-]+)(?=$|\s|[,;!?]|\.(?:\s|$))",
    re.IGNORECASE,
)

PIPELINE_PATTERN = re.compile(
    r"^\s*(?P<trigger>start|run)(?=\s|$)"
    r"(?:\s+pipeline(?=\s|$))?"
    r"(?:\s+(?P<pipeline>\S+))?",
    re.IGNORECASE,
)

BARE_NAME_PATTERN = re.compile(r"^[a-z0-9_-]+$")

TRAILING_PUNCTUATION = ".,;:!?)"

# Tokens that can follow the trigger keyword but never name a pipeline
RESERVED_WORDS = {"repository"}


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _clean_token(token: str) -> str:
    """Strip quoting and trailing punctuation chat users tend to add."""
    return token.strip().strip("`'\"").rstrip(TRAILING_PUNCTUATION)


def _unique(items: Iterable) -> list:
    """Drop repeated items, keeping first-appearance order."""
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def _parse_pull_request_url(url: str) -> PullRequestTarget | None:
    """
    Parse one link. Returns None when the link is not a pull-request link.

    Raises:
        MalformedReferenceError: link has a pull-requests segment but no numeric id
    """
    path = urlsplit(url).path
    match = PULL_REQUEST_PATH_PATTERN.search(path)
    if match is None:
        if "pull-requests" in [segment.lower() for segment in path.split("/")]:
            # e.g. https://bitbucket.org/pull-requests/1 - no workspace/slug
            raise MalformedReferenceError(url, reason="workspace and repository are missing")
        return None

    raw_id = match.group("pull_request_id") or ""
    if not PULL_REQUEST_ID_PATTERN.match(raw_id):
        logger.warning(f"Pull-request link with invalid id: {url}")
        raise MalformedReferenceError(url)

    pull_request_id = int(raw_id)
    if pull_request_id > MAX_PULL_REQUEST_ID:
        logger.warning(f"Pull-request link with out-of-range id: {url}")
        raise MalformedReferenceError(url, reason="pull-request id is out of range")

    return PullRequestTarget(
        workspace=match.group("workspace"),
        repository_slug=match.group("repository_slug"),
        id=pull_request_id,
    )


# =============================================================================
# PUBLIC INTERFACE - ONE FUNCTION PER RULE
# =============================================================================

def extract_pull_requests(text: str) -> List[PullRequestTarget]:
    """
    Extract every pull-request link from the text, left to right.

    Args:
        text: Raw chat text

    Returns:
        Pull-request targets with identity fields set. Repeated links to
        the same pull-request are returned once.

    Raises:
        MalformedReferenceError: a pull-request link has a non-numeric id
    """
    targets = []
    for url_match in URL_PATTERN.finditer(text or ""):
        url = url_match.group(0).rstrip(TRAILING_PUNCTUATION)
        target = _parse_pull_request_url(url)
        if target is not None:
            targets.append(target)
    return _unique(targets)


def extract_repositories(text: str) -> List[str]:
    """
    Extract every "repository <name>" reference, in order of appearance.

    Names are lower-cased; repeated names are returned once.
    """
    names = []
    for match in REPOSITORY_PATTERN.finditer(text or ""):
        name = match.group("repository").lower()
        if name:
            names.append(name)
    return _unique(names)


def extract_pipeline(text: str) -> str:
    """
    Extract the pipeline named right after a leading "start"/"run".

    "run pipeline <name>" is accepted as well.

    Returns:
        The pipeline name, or "" when there is no trigger keyword or the
        next token is not a valid pipeline identifier (e.g. a link).
    """
    match = PIPELINE_PATTERN.match(text or "")
    if match is None or not match.group("pipeline"):
        return ""

    candidate = _clean_token(match.group("pipeline")).lower()
    if candidate in RESERVED_WORDS or not PIPELINE_NAME_PATTERN.match(candidate):
        logger.debug(f"Token after trigger is not a pipeline name: '{candidate}'")
        return ""
    return candidate


def extract_intent(text: str) -> Intent:
    """
    Extract an intent from a single chat message (direct path).

    The returned intent may be incomplete; completeness is checked
    downstream by intent_validator.

    Raises:
        MalformedReferenceError: a pull-request link could not be parsed
    """
    pull_requests = extract_pull_requests(text)
    repositories = extract_repositories(text)
    pipeline = extract_pipeline(text)

    intent = Intent(
        pipeline=pipeline,
        pull_requests=pull_requests,
        repositories=[RepositoryTarget(name=name) for name in repositories],
    )
    logger.info(
        f"Extracted intent: pipeline='{intent.pipeline}', "
        f"pull_requests={len(intent.pull_requests)}, repositories={len(intent.repositories)}"
    )
    return intent


# =============================================================================
# REPLAY PATH - ANSWERS COLLECTED BY THE CONVERSATION
# =============================================================================

def extract_destination_answer(answer: str) -> tuple[List[PullRequestTarget], List[str]]:
    """
    Extract targets from an answer to the destination question.

    Besides links and "repository <name>", a bare name on its own
    (e.g. "billing-service") is accepted as a repository.
    """
    pull_requests = extract_pull_requests(answer)
    repositories = extract_repositories(answer)

    if not pull_requests and not repositories:
        bare = _clean_token(answer).lower()
        if BARE_NAME_PATTERN.match(bare):
            repositories = [bare]

    return pull_requests, repositories


def extract_pipeline_answer(answer: str) -> str:
    """
    Extract the pipeline from an answer to the pipeline question.

    Accepts either a full "start <pipeline>" phrase or the bare name.

    Raises:
        InvalidPipelineNameError: the answer is not a pipeline identifier
    """
    if PIPELINE_PATTERN.match(answer or ""):
        pipeline = extract_pipeline(answer)
        if pipeline:
            return pipeline

    candidate = _clean_token(answer or "").lower()
    if not candidate:
        return ""
    if candidate in RESERVED_WORDS or not PIPELINE_NAME_PATTERN.match(candidate):
        raise InvalidPipelineNameError(answer.strip())
    return candidate


def extract_intent_from_answers(answers: Dict[Slot, List[str]]) -> Intent:
    """
    Rebuild an intent from the answers a conversation collected.

    Args:
        answers: Answers grouped by the slot their question asked for,
                 each list in the order the answers were given

    Raises:
        MalformedReferenceError: a destination answer has a bad pull-request link
        InvalidPipelineNameError: the pipeline answer is not an identifier
    """
    pull_requests: List[PullRequestTarget] = []
    repositories: List[str] = []
    for answer in answers.get(Slot.DESTINATION, []):
        found_pull_requests, found_repositories = extract_destination_answer(answer)
        pull_requests.extend(found_pull_requests)
        repositories.extend(found_repositories)

    pipeline = ""
    for answer in answers.get(Slot.PIPELINE, []):
        pipeline = extract_pipeline_answer(answer)
        if pipeline:
            break

    intent = Intent(
        pipeline=pipeline,
        pull_requests=_unique(pull_requests),
        repositories=[RepositoryTarget(name=name) for name in _unique(repositories)],
    )
    logger.info(
        f"Rebuilt intent from answers: pipeline='{intent.pipeline}', "
        f"pull_requests={len(intent.pull_requests)}, repositories={len(intent.repositories)}"
    )
    return intent
