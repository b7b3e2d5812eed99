"""
Scenario Catalog - Clarifying-question dictionary for the run-pipeline event.

Loads the scenario definition (event name/version, ordered questions)
from YAML and exposes it to the conversation coordinator and to the host.

Field Semantics:
- `slot`: which part of the intent the answer fills (destination, pipeline)
- `prompt`: the question text sent to the user
- `version`: schema version of the question list; a host that stored an
  older version must migrate (reset) conversations saved under it
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from pipebot.models.intent import Slot

load_dotenv()


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent.parent / "catalog" / "scenarios.yaml"
SCENARIO_CATALOG_PATH = os.getenv("SCENARIO_CATALOG_PATH", str(DEFAULT_CATALOG_PATH))


class ScenarioCatalogError(Exception):
    """Exception raised for scenario catalog errors."""
    pass


@dataclass(frozen=True)
class Question:
    """One clarifying question of the scenario."""
    slot: Slot
    prompt: str

    def to_dict(self) -> Dict[str, str]:
        return {"slot": self.slot.value, "prompt": self.prompt}


def _parse_version(version: str) -> tuple:
    try:
        return tuple(int(part) for part in str(version).split("."))
    except ValueError:
        raise ScenarioCatalogError(f"Invalid scenario version: '{version}'")


class ScenarioCatalog:
    """
    Manages the scenario definition for the run-pipeline event.

    Usage:
        catalog = ScenarioCatalog()
        first = catalog.get_question(0).prompt
        if catalog.needs_update(installed_version):
            host.install(catalog.definition())
    """

    def __init__(self, catalog_path: Optional[str] = None) -> None:
        self.catalog_path = Path(catalog_path or SCENARIO_CATALOG_PATH)

        if not self.catalog_path.exists():
            raise ScenarioCatalogError(f"Scenario catalog not found at {self.catalog_path}")

        self._catalog = self._load_catalog()
        self._questions = self._build_questions()

    def _load_catalog(self) -> Dict:
        """Load and validate the scenario YAML file."""
        with open(self.catalog_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        required_sections = {'event', 'questions'}
        missing_sections = required_sections - set(data.keys())

        if missing_sections:
            raise ScenarioCatalogError(f"Missing scenario sections: {missing_sections}")

        event = data['event'] or {}
        if not event.get('name') or not event.get('version'):
            raise ScenarioCatalogError("Scenario event must have a name and a version")
        _parse_version(event['version'])

        return data

    def _build_questions(self) -> List[Question]:
        questions = []
        for idx, raw in enumerate(self._catalog.get('questions') or []):
            slot_name = (raw or {}).get('slot', '')
            prompt = ((raw or {}).get('prompt') or '').strip()
            try:
                slot = Slot(slot_name)
            except ValueError:
                raise ScenarioCatalogError(f"questions[{idx}]: unknown slot '{slot_name}'")
            if not prompt:
                raise ScenarioCatalogError(f"questions[{idx}]: prompt is empty")
            questions.append(Question(slot=slot, prompt=prompt))

        if not questions:
            raise ScenarioCatalogError("Scenario must define at least one question")

        # Every slot of an intent must be askable, otherwise a conversation
        # could never complete.
        asked = {q.slot for q in questions}
        unasked = [s.value for s in Slot if s not in asked]
        if unasked:
            raise ScenarioCatalogError(f"No question asks for slot(s): {unasked}")

        return questions

    # --------------- PUBLIC API ---------------

    @property
    def event_name(self) -> str:
        return self._catalog['event']['name']

    @property
    def version(self) -> str:
        return str(self._catalog['event']['version'])

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    def question_count(self) -> int:
        return len(self._questions)

    def get_question(self, index: int) -> Question:
        """Return the question at index. Raises ScenarioCatalogError if out of range."""
        if index < 0 or index >= len(self._questions):
            raise ScenarioCatalogError(
                f"Question index {index} out of range (0..{len(self._questions) - 1})"
            )
        return self._questions[index]

    # --------------- HOST HOOKS ---------------

    def definition(self) -> Dict[str, Any]:
        """The scenario as the host should persist it on install."""
        scenario = self._catalog.get('scenario') or {}
        return {
            "event_name": self.event_name,
            "event_version": self.version,
            "scenario_name": scenario.get('name', self.event_name),
            "triggers": list(self._catalog['event'].get('triggers') or []),
            "questions": [q.to_dict() for q in self._questions],
        }

    def needs_update(self, installed_version: Optional[str]) -> bool:
        """True when the host has nothing installed or an older version."""
        if not installed_version:
            return True
        return _parse_version(installed_version) < _parse_version(self.version)
