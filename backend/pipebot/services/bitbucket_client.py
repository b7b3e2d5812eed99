"""
Bitbucket Client - HTTP transport layer for the Bitbucket Cloud API.

This module handles communication with the Bitbucket REST API (2.0).
It is a TRANSPORT LAYER only - no business logic.

RESPONSIBILITIES:
1. Fetch pull-request info (title, description, source branch)
2. Trigger a custom pipeline on a branch
3. Handle authentication (app password)
4. Handle HTTP transport concerns (timeouts, errors)

This module does NOT:
- Decide which targets to run (that's dispatch_engine)
- Render replies
- Retry pipeline triggers (a retried trigger would start a second build)
"""

import os
import uuid
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# =============================================================================
# CONFIGURATION
# =============================================================================

BITBUCKET_API_URL = os.getenv("BITBUCKET_API_URL", "https://api.bitbucket.org/2.0")
BITBUCKET_USERNAME = os.getenv("BITBUCKET_USERNAME", "")
BITBUCKET_APP_PASSWORD = os.getenv("BITBUCKET_APP_PASSWORD", "")

# Execution guardrails
REQUEST_TIMEOUT_SECONDS = float(os.getenv("BITBUCKET_REQUEST_TIMEOUT", "15.0"))

# Retries for the idempotent pull-request lookup only
MAX_INFO_RETRIES = int(os.getenv("BITBUCKET_MAX_RETRIES", "0"))

BUILD_URL_TEMPLATE = "https://bitbucket.org/{workspace}/{repository_slug}/addon/pipelines/home#!/results/{build_number}"

PIPELINE_REF_TYPE_BRANCH = "branch"
PIPELINE_TARGET_TYPE = "pipeline_ref_target"
PIPELINE_SELECTOR_TYPE_CUSTOM = "custom"


# =============================================================================
# EXCEPTIONS (Transport-level only)
# =============================================================================

class BitbucketClientError(Exception):
    """Base exception for Bitbucket client errors."""
    pass


class BitbucketConnectionError(BitbucketClientError):
    """Failed to connect to Bitbucket."""
    pass


class BitbucketTimeoutError(BitbucketClientError):
    """Bitbucket request timed out."""
    pass


class BitbucketHTTPError(BitbucketClientError):
    """Bitbucket returned an HTTP error."""

    def __init__(self, message: str, status_code: int, response_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "status_code": self.status_code,
            "response_body": self.response_body,
        }


class BitbucketResponseError(BitbucketClientError):
    """Bitbucket answered 2xx with a body we cannot use."""
    pass


# =============================================================================
# RESPONSE WRAPPERS
# =============================================================================

@dataclass(frozen=True)
class PullRequestInfo:
    """The parts of a pull-request the dispatcher needs."""
    title: str
    description: str
    source_branch: str

    @classmethod
    def from_api_response(cls, response_json: dict[str, Any]) -> "PullRequestInfo":
        source = response_json.get("source") or {}
        branch = (source.get("branch") or {}).get("name") or ""
        if not branch:
            raise BitbucketResponseError("Pull-request response has no source branch")
        return cls(
            title=response_json.get("title") or "",
            description=response_json.get("description") or "",
            source_branch=branch,
        )


@dataclass(frozen=True)
class PipelineRun:
    """A triggered pipeline."""
    build_number: int

    @classmethod
    def from_api_response(cls, response_json: dict[str, Any]) -> "PipelineRun":
        build_number = response_json.get("build_number")
        if not isinstance(build_number, int):
            raise BitbucketResponseError(f"Pipeline response has no build number: {response_json}")
        return cls(build_number=build_number)


def build_url(workspace: str, repository_slug: str, build_number: int) -> str:
    """Link to the build status report of a pipeline run."""
    return BUILD_URL_TEMPLATE.format(
        workspace=workspace,
        repository_slug=repository_slug,
        build_number=build_number,
    )


# =============================================================================
# CLIENT CLASS
# =============================================================================

class BitbucketClient:
    """
    HTTP client for the Bitbucket Cloud REST API.

    Handles transport-level concerns:
    - HTTP connection/errors
    - Timeouts
    - Authentication
    - Request IDs

    Usage:
        client = BitbucketClient()
        info = client.get_pull_request_info("john", "test-repo", 1)
        run = client.run_pipeline("john", "test-repo", info.source_branch, "staging-deploy")
    """

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        app_password: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize Bitbucket client.

        Args:
            base_url: API base URL (default: from env BITBUCKET_API_URL)
            username: Account name (default: from env BITBUCKET_USERNAME)
            app_password: App password (default: from env BITBUCKET_APP_PASSWORD)
            timeout: Request timeout in seconds (default: from env BITBUCKET_REQUEST_TIMEOUT)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or BITBUCKET_API_URL).rstrip("/")
        self.username = username or BITBUCKET_USERNAME
        self.app_password = app_password or BITBUCKET_APP_PASSWORD
        self.timeout = timeout or REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _generate_request_id(self) -> str:
        """Generate unique request ID for tracing."""
        return str(uuid.uuid4())[:8]

    def _build_headers(self, request_id: str) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Request-Id": request_id,
        }

    def _auth(self) -> httpx.BasicAuth | None:
        if self.username and self.app_password:
            return httpx.BasicAuth(self.username, self.app_password)
        return None

    def get_pull_request_info(self, workspace: str, repository_slug: str, pull_request_id: int) -> PullRequestInfo:
        """
        Fetch title, description and source branch of a pull-request.

        Raises:
            BitbucketConnectionError: Cannot connect
            BitbucketTimeoutError: Request timed out
            BitbucketHTTPError: HTTP error (e.g. 404 for an unknown pull-request)
            BitbucketResponseError: Response lacks the source branch
        """
        url = f"{self.base_url}/repositories/{workspace}/{repository_slug}/pullrequests/{pull_request_id}"

        last_error: Exception | None = None
        for attempt in range(MAX_INFO_RETRIES + 1):
            try:
                response_json = self._execute_request("GET", url)
                return PullRequestInfo.from_api_response(response_json)
            except (BitbucketConnectionError, BitbucketTimeoutError) as e:
                last_error = e
                if attempt < MAX_INFO_RETRIES:
                    continue
                raise

        raise last_error  # type: ignore

    def run_pipeline(self, workspace: str, repository_slug: str, ref_name: str, pipeline: str) -> PipelineRun:
        """
        Trigger a custom pipeline on a branch. Never retried.

        Raises:
            BitbucketConnectionError, BitbucketTimeoutError, BitbucketHTTPError,
            BitbucketResponseError
        """
        url = f"{self.base_url}/repositories/{workspace}/{repository_slug}/pipelines/"
        payload = {
            "target": {
                "ref_name": ref_name,
                "ref_type": PIPELINE_REF_TYPE_BRANCH,
                "type": PIPELINE_TARGET_TYPE,
                "selector": {
                    "type": PIPELINE_SELECTOR_TYPE_CUSTOM,
                    "pattern": pipeline,
                },
            }
        }
        response_json = self._execute_request("POST", url, payload)
        return PipelineRun.from_api_response(response_json)

    def _execute_request(self, method: str, url: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute HTTP request to Bitbucket."""
        request_id = self._generate_request_id()
        headers = self._build_headers(request_id)

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    url,
                    json=payload,
                    headers=headers,
                    auth=self._auth(),
                )
        except httpx.ConnectError as e:
            raise BitbucketConnectionError(f"Cannot connect to Bitbucket at {url}: {e}") from e
        except httpx.TimeoutException as e:
            raise BitbucketTimeoutError(f"Bitbucket request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise BitbucketConnectionError(f"HTTP error: {e}") from e

        if response.status_code >= 400:
            try:
                error_body = response.json()
            except Exception:
                error_body = response.text

            message = f"Bitbucket returned HTTP {response.status_code}"
            api_error = error_body.get("error") if isinstance(error_body, dict) else None
            if isinstance(api_error, dict) and api_error.get("message"):
                message = f"{message}: {api_error['message']}"

            raise BitbucketHTTPError(
                message,
                status_code=response.status_code,
                response_body=error_body,
            )

        try:
            return response.json()
        except Exception as e:
            raise BitbucketResponseError(f"Invalid JSON response from Bitbucket: {e}") from e
