import pytest

from pipebot.models.intent import Slot
from pipebot.services.scenario_catalog import ScenarioCatalog, ScenarioCatalogError


def _write_catalog(tmp_path, content):
    path = tmp_path / "scenarios.yaml"
    path.write_text(content, encoding="utf-8")
    return str(path)


# ------------------------------------------------------------------
# SHIPPED CATALOG
# ------------------------------------------------------------------

def test_shipped_catalog_loads(catalog):
    assert catalog.event_name == "bitbucket_run_pipeline"
    assert catalog.question_count() == 2


def test_destination_is_asked_before_pipeline(catalog):
    assert [q.slot for q in catalog.questions] == [Slot.DESTINATION, Slot.PIPELINE]
    assert catalog.get_question(1).prompt == "Could you please tell me which pipeline I should run?"


def test_question_index_out_of_range(catalog):
    with pytest.raises(ScenarioCatalogError):
        catalog.get_question(catalog.question_count())


def test_definition_for_host(catalog):
    definition = catalog.definition()

    assert definition["event_version"] == catalog.version
    assert definition["triggers"] == ["start", "run"]
    assert definition["questions"][0]["slot"] == "destination"


@pytest.mark.parametrize("installed,expected", [
    (None, True),
    ("", True),
    ("1.0.0", True),
    ("1.9.9", True),
    ("2.0.0", False),
    ("10.0.0", False),
])
def test_needs_update(catalog, installed, expected):
    assert catalog.needs_update(installed) is expected


# ------------------------------------------------------------------
# INVALID CATALOGS
# ------------------------------------------------------------------

def test_missing_file(tmp_path):
    with pytest.raises(ScenarioCatalogError):
        ScenarioCatalog(str(tmp_path / "missing.yaml"))


def test_missing_questions_section(tmp_path):
    path = _write_catalog(tmp_path, "event:\n  name: e\n  version: '1.0'\n")
    with pytest.raises(ScenarioCatalogError):
        ScenarioCatalog(path)


def test_unknown_slot(tmp_path):
    path = _write_catalog(tmp_path, """
event: {name: e, version: "1.0"}
questions:
  - {slot: destination, prompt: "Where?"}
  - {slot: branch, prompt: "Which branch?"}
""")
    with pytest.raises(ScenarioCatalogError, match="unknown slot"):
        ScenarioCatalog(path)


def test_every_slot_must_be_asked(tmp_path):
    path = _write_catalog(tmp_path, """
event: {name: e, version: "1.0"}
questions:
  - {slot: destination, prompt: "Where?"}
""")
    with pytest.raises(ScenarioCatalogError, match="pipeline"):
        ScenarioCatalog(path)


def test_invalid_version(tmp_path):
    path = _write_catalog(tmp_path, """
event: {name: e, version: "two"}
questions:
  - {slot: destination, prompt: "Where?"}
  - {slot: pipeline, prompt: "Which?"}
""")
    with pytest.raises(ScenarioCatalogError):
        ScenarioCatalog(path)


def test_longer_question_list_is_accepted(tmp_path):
    path = _write_catalog(tmp_path, """
event: {name: e, version: "3.1"}
questions:
  - {slot: destination, prompt: "Which pull-requests?"}
  - {slot: destination, prompt: "Any repositories?"}
  - {slot: pipeline, prompt: "Which pipeline?"}
""")
    catalog = ScenarioCatalog(path)

    assert catalog.question_count() == 3
    assert catalog.needs_update("3.0") is True
