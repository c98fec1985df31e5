"""
Unchecked dereference sites found during one function analysis.
"""

from dataclasses import dataclass
from typing import Iterator, List

from nullinfer.sil.types import Location


@dataclass(frozen=True)
class Violation:
    """A dereference whose operand the flow condition does not prove non-null"""
    loc: Location
    value: str
    kind: str = "UNCHECKED_DEREFERENCE"

    def __str__(self) -> str:
        return f"{self.kind} of {self.value} at {self.loc}"


class ViolationCollector:
    """
    Append-only sink for violations.

    Every syntactic site is kept, even when two sites dereference the
    same value.
    """

    def __init__(self):
        self._violations: List[Violation] = []

    def __iter__(self) -> Iterator[Violation]:
        return iter(self._violations)

    def __len__(self) -> int:
        return len(self._violations)

    def record(self, loc: Location, value: str) -> Violation:
        violation = Violation(loc=loc, value=value)
        self._violations.append(violation)
        return violation

    def for_value(self, value: str) -> List[Violation]:
        return [v for v in self._violations if v.value == value]
