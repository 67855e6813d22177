from dataclasses import asdict, dataclass, fields, replace
from typing import Optional

from app.services.state_machine import ConversationStep

BIRTH_TIME_EXACT = "Exact"
BIRTH_TIME_APPROXIMATE = "Approximate"
BIRTH_TIME_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class CollectedProfile:
    full_name: Optional[str] = None
    dob: Optional[str] = None
    birth_time_type: Optional[str] = None
    birth_time_value: Optional[str] = None
    birth_place: Optional[str] = None
    current_location: Optional[str] = None
    gender: Optional[str] = None

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_row(cls, row) -> "CollectedProfile":
        return cls(**{name: getattr(row, name, None) for name in cls.field_names()})

    def merged(self, updates: dict) -> "CollectedProfile":
        return replace(self, **updates)

    def as_dict(self) -> dict:
        return asdict(self)

    def first_missing_step(self) -> ConversationStep:
        """First collection step whose answer is still missing, in flow order."""
        if not self.full_name:
            return ConversationStep.COLLECT_FULL_NAME
        if not self.dob:
            return ConversationStep.COLLECT_DOB
        if not self.birth_time_type:
            return ConversationStep.COLLECT_BIRTH_TIME
        if not self.birth_time_value:
            if self.birth_time_type == BIRTH_TIME_EXACT:
                return ConversationStep.COLLECT_BIRTH_TIME_EXACT_VALUE
            if self.birth_time_type == BIRTH_TIME_APPROXIMATE:
                return ConversationStep.COLLECT_BIRTH_TIME_APPROX_VALUE
        if not self.birth_place:
            return ConversationStep.COLLECT_BIRTH_PLACE
        if not self.current_location:
            return ConversationStep.COLLECT_CURRENT_LOCATION
        if not self.gender:
            return ConversationStep.COLLECT_GENDER
        return ConversationStep.AWAITING_VERIFICATION

    def is_complete(self) -> bool:
        return self.first_missing_step() == ConversationStep.AWAITING_VERIFICATION
