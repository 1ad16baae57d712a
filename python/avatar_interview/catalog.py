"""
Round catalog.

Resolves which avatar serves each interview round. Rounds whose avatar
is not configured are excluded from the catalog rather than reported as
errors, so the ordered sequence only ever contains usable rounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from .config import STOCK_PERSONA_ID, InterviewConfig
from .models import MOCK_SESSION_PREFIX, InterviewRound


__all__ = [
    "RoundDefinition",
    "RoundCatalog",
    "DEFAULT_ROUND_DEFINITIONS",
    "INTERVIEW_TYPE_TO_ROUND",
]


@dataclass(frozen=True)
class RoundDefinition:
    """Static description of one round, before an avatar is bound."""

    id: str
    name: str
    description: str
    duration_minutes: int
    icon: str


DEFAULT_ROUND_DEFINITIONS: tuple[RoundDefinition, ...] = (
    RoundDefinition(
        "screening",
        "HR Screening",
        "Initial screening with HR representative",
        15,
        "User",
    ),
    RoundDefinition(
        "technical",
        "Technical Round",
        "Technical interview with engineering lead",
        45,
        "Code",
    ),
    RoundDefinition(
        "behavioral",
        "Behavioral Round",
        "Behavioral interview with hiring manager",
        30,
        "MessageSquare",
    ),
)

# Composite types fall back to the technical round.
INTERVIEW_TYPE_TO_ROUND: dict[str, str] = {
    "screening": "screening",
    "technical": "technical",
    "behavioral": "behavioral",
    "mixed": "technical",
}


class RoundCatalog:
    """
    Ordered, read-only set of usable interview rounds.

    Example:
        >>> catalog = RoundCatalog({"technical": "r-tech", "behavioral": "r-beh"})
        >>> [r.id for r in catalog.list_rounds()]
        ['technical', 'behavioral']
        >>> catalog.round_for_type("mixed").id
        'technical'
    """

    def __init__(
        self,
        replica_ids: Mapping[str, Optional[str]],
        *,
        definitions: Iterable[RoundDefinition] = DEFAULT_ROUND_DEFINITIONS,
        persona_ids: Optional[Mapping[str, str]] = None,
        default_persona_id: Optional[str] = STOCK_PERSONA_ID,
        type_map: Mapping[str, str] = INTERVIEW_TYPE_TO_ROUND,
    ) -> None:
        persona_ids = persona_ids or {}
        self._definitions = tuple(definitions)
        ids = [definition.id for definition in self._definitions]
        if len(ids) != len(set(ids)):
            raise ValueError("Round definitions must have unique ids.")

        rounds: list[InterviewRound] = []
        for definition in self._definitions:
            replica_id = (replica_ids.get(definition.id) or "").strip()
            if not replica_id:
                continue
            rounds.append(
                InterviewRound(
                    id=definition.id,
                    name=definition.name,
                    description=definition.description,
                    replica_id=replica_id,
                    persona_id=persona_ids.get(definition.id) or default_persona_id,
                    duration_minutes=definition.duration_minutes,
                    icon=definition.icon,
                )
            )
        self._rounds = tuple(rounds)
        self._by_id = {item.id: item for item in self._rounds}
        self._type_map = {key.lower(): value for key, value in type_map.items()}

    @classmethod
    def from_config(cls, config: InterviewConfig) -> "RoundCatalog":
        """Build the catalog from resolved interview configuration."""
        return cls(
            config.replica_ids,
            persona_ids=config.persona_ids,
            default_persona_id=config.default_persona_id,
        )

    @classmethod
    def demo(cls, definitions: Iterable[RoundDefinition] = DEFAULT_ROUND_DEFINITIONS) -> "RoundCatalog":
        """Catalog with a synthetic avatar bound to every round, for mock mode."""
        definitions = tuple(definitions)
        return cls(
            {d.id: f"{MOCK_SESSION_PREFIX}replica-{d.id}" for d in definitions},
            definitions=definitions,
            default_persona_id=None,
        )

    def __len__(self) -> int:
        return len(self._rounds)

    def list_rounds(self) -> tuple[InterviewRound, ...]:
        """Return configured rounds in interview order."""
        return self._rounds

    def all_definitions(self) -> tuple[RoundDefinition, ...]:
        """Return every known round definition, configured or not."""
        return self._definitions

    def get_round(self, round_id: str) -> Optional[InterviewRound]:
        return self._by_id.get((round_id or "").strip().lower())

    def index_of(self, round_id: str) -> int:
        """Return the position of a configured round, or -1."""
        for index, item in enumerate(self._rounds):
            if item.id == round_id:
                return index
        return -1

    def rounds_after(self, round_id: str) -> tuple[InterviewRound, ...]:
        """Return the configured rounds that follow round_id in order."""
        index = self.index_of(round_id)
        if index < 0:
            return ()
        return self._rounds[index + 1 :]

    def round_for_type(self, interview_type: Optional[str]) -> Optional[InterviewRound]:
        """Map a coarse interview-type label to a configured round."""
        round_id = self._type_map.get((interview_type or "").strip().lower())
        if round_id is None:
            return None
        return self._by_id.get(round_id)

    def replica_for_type(self, interview_type: Optional[str]) -> Optional[str]:
        """Return the avatar id serving an interview type, or None."""
        interview_round = self.round_for_type(interview_type)
        return interview_round.replica_id if interview_round else None
