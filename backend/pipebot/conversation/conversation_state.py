import time
from dataclasses import dataclass, field
from enum import Enum


class ScenarioKind(str, Enum):
    NONE = "none"
    AWAITING_INTENT = "awaiting_intent"


@dataclass
class ConversationState:
    channel: str
    pending_question_index: int = 0
    collected_answers: list[str] = field(default_factory=list)
    scenario_kind: ScenarioKind = ScenarioKind.AWAITING_INTENT
    scenario_version: str = ""
    updated_at: float = field(default_factory=time.time)

    def record_answer(self, text: str) -> None:
        """Append the answer to the pending question and move to the next one."""
        self.collected_answers.append(text)
        self.pending_question_index += 1
        self.updated_at = time.time()

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "pending_question_index": self.pending_question_index,
            "collected_answers": list(self.collected_answers),
            "scenario_kind": self.scenario_kind.value,
            "scenario_version": self.scenario_version,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationState":
        return cls(
            channel=data["channel"],
            pending_question_index=int(data["pending_question_index"]),
            collected_answers=list(data["collected_answers"]),
            scenario_kind=ScenarioKind(data.get("scenario_kind", ScenarioKind.AWAITING_INTENT.value)),
            scenario_version=data.get("scenario_version", ""),
            updated_at=float(data.get("updated_at", time.time())),
        )
