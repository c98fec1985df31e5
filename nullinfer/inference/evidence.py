"""
Evidence and inference records.

An Evidence record is one observed fact about one slot of one symbol:
slot 0 is the return value, slots 1..N the parameters. An Inference is
the merged verdict for every slot of a symbol that had evidence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from nullinfer.errors import MalformedEvidenceError
from nullinfer.sil.types import NullabilityKind


class EvidenceKind(Enum):
    """The situation that produced a piece of evidence"""
    ANNOTATED_NONNULL = "ANNOTATED_NONNULL"
    ANNOTATED_NULLABLE = "ANNOTATED_NULLABLE"
    UNCHECKED_DEREFERENCE = "UNCHECKED_DEREFERENCE"
    ABORTS_IF_NULL = "ABORTS_IF_NULL"
    NULLPTR_RETURNED = "NULLPTR_RETURNED"
    NULLABLE_RETURN = "NULLABLE_RETURN"
    NONNULL_RETURN = "NONNULL_RETURN"
    UNKNOWN_RETURN = "UNKNOWN_RETURN"
    NULLPTR_ASSIGNED = "NULLPTR_ASSIGNED"
    NULLABLE_ARGUMENT = "NULLABLE_ARGUMENT"
    NONNULL_ARGUMENT = "NONNULL_ARGUMENT"
    UNKNOWN_ARGUMENT = "UNKNOWN_ARGUMENT"

    def __str__(self) -> str:
        return self.value

    @property
    def pull(self) -> NullabilityKind:
        """Direction this kind pulls its slot; UNKNOWN means neutral"""
        return _PULL[self]

    @property
    def is_annotation(self) -> bool:
        return self in (EvidenceKind.ANNOTATED_NONNULL, EvidenceKind.ANNOTATED_NULLABLE)

    @property
    def is_mandatory(self) -> bool:
        """The function cannot run correctly if the slot is null"""
        return self in (EvidenceKind.UNCHECKED_DEREFERENCE, EvidenceKind.ABORTS_IF_NULL)


_PULL = {
    EvidenceKind.ANNOTATED_NONNULL: NullabilityKind.NONNULL,
    EvidenceKind.ANNOTATED_NULLABLE: NullabilityKind.NULLABLE,
    EvidenceKind.UNCHECKED_DEREFERENCE: NullabilityKind.NONNULL,
    EvidenceKind.ABORTS_IF_NULL: NullabilityKind.NONNULL,
    EvidenceKind.NULLPTR_RETURNED: NullabilityKind.NULLABLE,
    EvidenceKind.NULLABLE_RETURN: NullabilityKind.NULLABLE,
    EvidenceKind.NONNULL_RETURN: NullabilityKind.NONNULL,
    EvidenceKind.UNKNOWN_RETURN: NullabilityKind.UNKNOWN,
    EvidenceKind.NULLPTR_ASSIGNED: NullabilityKind.NULLABLE,
    EvidenceKind.NULLABLE_ARGUMENT: NullabilityKind.NULLABLE,
    EvidenceKind.NONNULL_ARGUMENT: NullabilityKind.NONNULL,
    EvidenceKind.UNKNOWN_ARGUMENT: NullabilityKind.UNKNOWN,
}


@dataclass(frozen=True)
class Evidence:
    """One fact about one slot of one symbol"""
    symbol: str
    slot: int
    kind: EvidenceKind
    location: str

    def __str__(self) -> str:
        return f"{self.symbol} slot {self.slot}: {self.kind} at {self.location}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "slot": self.slot,
            "kind": self.kind.value,
            "location": self.location,
        }

    def validate(self, arity: Optional[int] = None) -> None:
        """Raise MalformedEvidenceError unless the slot exists"""
        if self.slot < 0:
            raise MalformedEvidenceError(f"{self.symbol} has no slot {self.slot}")
        if arity is not None and self.slot > arity:
            raise MalformedEvidenceError(
                f"{self.symbol} has no slot {self.slot} (arity {arity})")


@dataclass(frozen=True)
class Sample:
    """Provenance kept for one slot verdict"""
    kind: EvidenceKind
    location: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "location": self.location}


@dataclass
class SlotInference:
    """Merged verdict for one slot"""
    slot: int
    nullability: NullabilityKind
    conflict: bool = False
    samples: List[Sample] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot": self.slot,
            "nullability": self.nullability.value,
            "conflict": self.conflict,
            "samples": [s.to_dict() for s in self.samples],
        }


@dataclass
class Inference:
    """Merged verdicts for every slot of one symbol that had evidence"""
    symbol: str
    slots: List[SlotInference] = field(default_factory=list)

    def __str__(self) -> str:
        verdicts = ", ".join(f"{s.slot}={s.nullability}" for s in self.slots)
        return f"{self.symbol}: {verdicts}"

    def slot(self, slot: int) -> Optional[SlotInference]:
        for slot_inference in self.slots:
            if slot_inference.slot == slot:
                return slot_inference
        return None

    def nullability(self, slot: int) -> Optional[NullabilityKind]:
        slot_inference = self.slot(slot)
        return slot_inference.nullability if slot_inference else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "slots": [s.to_dict() for s in self.slots],
        }
