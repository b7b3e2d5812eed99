import pytest

from pipebot.models.intent import Intent, PullRequestTarget, RepositoryTarget, Slot
from pipebot.services.intent_errors import InvalidPipelineNameError, MalformedReferenceError
from pipebot.services.intent_extractor import (
    extract_destination_answer,
    extract_intent,
    extract_intent_from_answers,
    extract_pipeline,
    extract_pipeline_answer,
    extract_pull_requests,
    extract_repositories,
)

PR_URL_1 = "https://bitbucket.org/john/test-repo/pull-requests/1/testing-pr-flow/diff"
PR_URL_2 = "https://bitbucket.org/john/other-repo/pull-requests/7"


# ------------------------------------------------------------------
# PULL-REQUESTS
# ------------------------------------------------------------------

def test_single_pull_request_link():
    targets = extract_pull_requests(f"start staging-deploy {PR_URL_1}")

    assert len(targets) == 1
    assert targets[0].workspace == "john"
    assert targets[0].repository_slug == "test-repo"
    assert targets[0].id == 1


def test_pull_requests_keep_message_order():
    targets = extract_pull_requests(f"{PR_URL_2} and also {PR_URL_1}")

    assert [t.key for t in targets] == [("john", "other-repo", 7), ("john", "test-repo", 1)]


def test_repeated_pull_request_link_returned_once():
    targets = extract_pull_requests(f"{PR_URL_1} {PR_URL_1.replace('/diff', '/commits')}")
    assert len(targets) == 1


def test_chat_wrapped_link():
    text = "start deploy <https://bitbucket.org/john/test-repo/pull-requests/3|Fix login>"
    targets = extract_pull_requests(text)
    assert [t.id for t in targets] == [3]


def test_link_with_trailing_punctuation():
    targets = extract_pull_requests(f"please run it on {PR_URL_2}.")
    assert targets[0].id == 7


def test_non_pull_request_link_is_ignored():
    assert extract_pull_requests("see https://bitbucket.org/john/test-repo/src/master/README.md") == []


@pytest.mark.parametrize("url", [
    "https://bitbucket.org/john/test-repo/pull-requests/test/testing-pr-flow",
    "https://bitbucket.org/john/test-repo/pull-requests/",
    "https://bitbucket.org/pull-requests/1",
])
def test_malformed_pull_request_link_raises(url):
    with pytest.raises(MalformedReferenceError) as exc:
        extract_pull_requests(f"start deploy {url}")

    assert exc.value.to_dict()["error_code"] == "MALFORMED_REFERENCE"
    assert exc.value.field == "destination"


def test_malformed_link_fails_even_next_to_valid_one():
    with pytest.raises(MalformedReferenceError):
        extract_pull_requests(f"{PR_URL_1} https://bitbucket.org/john/test-repo/pull-requests/abc")


def test_pull_request_id_beyond_64_bits_is_malformed():
    url = "https://bitbucket.org/john/test-repo/pull-requests/9999999999999999999999999"

    with pytest.raises(MalformedReferenceError) as exc:
        extract_pull_requests(f"start deploy {url}")

    assert "out of range" in str(exc.value)
    assert exc.value.to_dict()["error_code"] == "MALFORMED_REFERENCE"


def test_largest_pull_request_id_is_accepted():
    url = "https://bitbucket.org/john/test-repo/pull-requests/9223372036854775807"

    assert extract_pull_requests(url)[0].id == 2**63 - 1


# ------------------------------------------------------------------
# REPOSITORIES
# ------------------------------------------------------------------

def test_single_repository():
    assert extract_repositories("start staging-deploy repository billing-service") == ["billing-service"]


def test_many_repositories_in_order_without_duplicates():
    text = "repository API, repository web_app and repository api."
    assert extract_repositories(text) == ["api", "web_app"]


def test_repository_keyword_without_name():
    assert extract_repositories("start deploy repository") == []


def test_repository_name_with_invalid_characters_is_skipped():
    assert extract_repositories("repository my.repo") == []


# ------------------------------------------------------------------
# PIPELINE
# ------------------------------------------------------------------

@pytest.mark.parametrize("text,expected", [
    ("start staging-deploy repository api", "staging-deploy"),
    ("run nightly_build repository api", "nightly_build"),
    ("run pipeline deploy repository api", "deploy"),
    ("Start Deploy.", "deploy"),
    ("start `deploy`", "deploy"),
])
def test_pipeline_after_trigger(text, expected):
    assert extract_pipeline(text) == expected


@pytest.mark.parametrize("text", [
    "start",
    "deploy repository api",
    "please start deploy",
    "starting deploy",
    f"start {PR_URL_1}",
    "start repository api",
    "",
])
def test_no_pipeline_is_empty_not_error(text):
    assert extract_pipeline(text) == ""


# ------------------------------------------------------------------
# DIRECT INTENT
# ------------------------------------------------------------------

def test_extract_complete_intent():
    intent = extract_intent(f"start staging-deploy {PR_URL_1} repository billing")

    assert intent.pipeline == "staging-deploy"
    assert intent.pull_requests == [PullRequestTarget(workspace="john", repository_slug="test-repo", id=1)]
    assert intent.repositories == [RepositoryTarget(name="billing")]
    assert intent.is_complete()


def test_extract_incomplete_intent():
    intent = extract_intent("start")

    assert not intent.is_complete()
    assert intent.missing_slots() == [Slot.DESTINATION, Slot.PIPELINE]


# ------------------------------------------------------------------
# ANSWERS
# ------------------------------------------------------------------

def test_destination_answer_with_links_and_repositories():
    pull_requests, repositories = extract_destination_answer(f"{PR_URL_2} repository api")

    assert [pr.id for pr in pull_requests] == [7]
    assert repositories == ["api"]


def test_destination_answer_bare_name_is_repository():
    assert extract_destination_answer("Billing-Service.") == ([], ["billing-service"])


def test_destination_answer_without_targets():
    assert extract_destination_answer("not sure yet") == ([], [])


def test_destination_answer_malformed_link():
    with pytest.raises(MalformedReferenceError):
        extract_destination_answer("https://bitbucket.org/john/test-repo/pull-requests/one")


@pytest.mark.parametrize("answer", ["staging-deploy", "start staging-deploy", " `staging-deploy` "])
def test_pipeline_answer(answer):
    assert extract_pipeline_answer(answer) == "staging-deploy"


def test_empty_pipeline_answer():
    assert extract_pipeline_answer("   ") == ""


@pytest.mark.parametrize("answer", ["deploy it now", "repository", "deploy/prod"])
def test_invalid_pipeline_answer(answer):
    with pytest.raises(InvalidPipelineNameError):
        extract_pipeline_answer(answer)


def test_intent_from_answers_matches_direct_intent():
    direct = extract_intent(f"start staging-deploy {PR_URL_1}")
    rebuilt = extract_intent_from_answers({
        Slot.DESTINATION: [PR_URL_1],
        Slot.PIPELINE: ["staging-deploy"],
    })

    assert rebuilt == direct


def test_intent_from_answers_merges_destination_answers():
    intent = extract_intent_from_answers({
        Slot.DESTINATION: [PR_URL_1, f"repository api {PR_URL_1}"],
        Slot.PIPELINE: ["deploy"],
    })

    assert intent.target_count == 2
    assert intent.repositories == [RepositoryTarget(name="api")]


def test_intent_from_answers_without_answers():
    assert extract_intent_from_answers({}) == Intent()
