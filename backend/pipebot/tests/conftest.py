import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock

# Add backend directory to sys.path to allow imports from pipebot
backend_path = Path(__file__).parent.parent.parent.resolve()
sys.path.append(str(backend_path))

from pipebot.conversation.state_store import ConversationStore
from pipebot.services.bitbucket_client import BitbucketClient, PipelineRun, PullRequestInfo
from pipebot.services.conversation_coordinator import SlotFillingCoordinator
from pipebot.services.dispatch_engine import DispatchEngine
from pipebot.services.scenario_catalog import ScenarioCatalog


@pytest.fixture(scope="session")
def catalog_path():
    return backend_path / "catalog" / "scenarios.yaml"

@pytest.fixture(scope="session")
def catalog(catalog_path):
    return ScenarioCatalog(str(catalog_path))

@pytest.fixture
def store():
    # Empty URL: in-memory only, no Redis needed
    return ConversationStore(redis_url="")

@pytest.fixture
def coordinator(store, catalog):
    return SlotFillingCoordinator(store, catalog)

@pytest.fixture
def bitbucket():
    """A BitbucketClient double that resolves every PR to a feature branch."""
    client = MagicMock(spec=BitbucketClient)
    client.get_pull_request_info.side_effect = lambda workspace, slug, pr_id: PullRequestInfo(
        title=f"PR {pr_id}",
        description="Fixes \\_everything\\_",
        source_branch=f"feature/{slug}-{pr_id}",
    )
    client.run_pipeline.return_value = PipelineRun(build_number=42)
    return client

@pytest.fixture
def engine(bitbucket):
    return DispatchEngine(bitbucket, default_workspace="acme", default_branch="master", max_workers=2)
