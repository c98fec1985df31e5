"""
Exceptions raised by the nullability inference.

Every failure is scoped: an error raised while analysing one function
skips that function only, and a malformed evidence record is dropped on
its own. Implication-oracle failures never raise; the arena turns them
into an unknown answer.
"""

from typing import Optional

from nullinfer.sil.types import Location


class NullabilityError(Exception):
    """Base class for inference errors"""
    pass


class UnsupportedConstructError(NullabilityError):
    """A function body contains a construct the transfer functions do not handle"""

    def __init__(self, construct: str, loc: Optional[Location] = None):
        self.construct = construct
        self.loc = loc
        where = f" at {loc}" if loc else ""
        super().__init__(f"unsupported construct '{construct}'{where}")


class AnalysisBudgetExceeded(NullabilityError):
    """The per-function time budget or the fixpoint visit limit ran out"""
    pass


class MalformedEvidenceError(NullabilityError):
    """An evidence record names a slot its symbol does not have"""
    pass


class TransferTableError(NullabilityError):
    """The transfer handler table does not cover every instruction kind"""
    pass
