"""
Evidence merge engine.

Evidence is sorted by symbol, slot, location (file, then numeric line
and column) and kind, grouped into runs per symbol and per slot, and
each slot's kinds are folded into one verdict. The fold only looks at
the set of kinds present, so the result does not depend on the order
evidence arrives in.

Rules, first match wins:
    1. both ANNOTATED_NONNULL and ANNOTATED_NULLABLE      -> UNKNOWN (conflict)
    2. exactly one annotation kind                         -> that kind
    3. a mandatory NONNULL kind and any NULLABLE pull      -> UNKNOWN (conflict)
    4. any NULLABLE pull                                   -> NULLABLE
    5. a mandatory NONNULL kind                            -> NONNULL
    6. a soft NONNULL pull and no neutral kind             -> NONNULL
    7. otherwise                                           -> UNKNOWN
"""

from itertools import groupby
from typing import Dict, Iterable, List, Optional, Tuple

from nullinfer.errors import MalformedEvidenceError
from nullinfer.inference.evidence import (
    Evidence, EvidenceKind, Inference, Sample, SlotInference,
)
from nullinfer.sil.types import NullabilityKind


def resolve(kinds: Iterable[EvidenceKind]) -> Tuple[NullabilityKind, bool]:
    """Verdict for one slot, and whether it comes from a conflict"""
    kinds = set(kinds)

    annotations = {kind.pull for kind in kinds if kind.is_annotation}
    if len(annotations) > 1:
        return NullabilityKind.UNKNOWN, True
    if annotations:
        return annotations.pop(), False

    nullable = any(kind.pull == NullabilityKind.NULLABLE for kind in kinds)
    mandatory = any(kind.is_mandatory for kind in kinds)
    if mandatory and nullable:
        return NullabilityKind.UNKNOWN, True
    if nullable:
        return NullabilityKind.NULLABLE, False
    if mandatory:
        return NullabilityKind.NONNULL, False

    soft = any(kind.pull == NullabilityKind.NONNULL for kind in kinds)
    neutral = any(kind.pull == NullabilityKind.UNKNOWN for kind in kinds)
    if soft and not neutral:
        return NullabilityKind.NONNULL, False
    return NullabilityKind.UNKNOWN, False


def combine(kinds: Iterable[EvidenceKind]) -> NullabilityKind:
    """Fold the evidence kinds of one slot into its verdict"""
    return resolve(kinds)[0]


def merge_slot(slot: int, evidence: List[Evidence], max_samples: int = 16) -> SlotInference:
    nullability, conflict = resolve(e.kind for e in evidence)
    samples = sorted({Sample(e.kind, e.location) for e in evidence},
                     key=lambda s: (location_key(s.location), s.kind.name))
    return SlotInference(slot=slot, nullability=nullability, conflict=conflict,
                         samples=samples[:max_samples])


def location_key(location: str) -> Tuple[str, int, int]:
    """(file, line, column) of a "file:line:col" location, for ordering"""
    parts = location.rsplit(":", 2)
    if len(parts) == 3 and parts[1].isdigit() and parts[2].isdigit():
        return parts[0], int(parts[1]), int(parts[2])
    return location, 0, 0


def _sort_key(evidence: Evidence):
    return (evidence.symbol, evidence.slot, location_key(evidence.location), evidence.kind.name)


def merge_evidence(evidence: Iterable[Evidence], max_samples: int = 16,
                   arities: Optional[Dict[str, int]] = None,
                   diagnostics: Optional[List[str]] = None) -> List[Inference]:
    """
    Merge a batch of evidence into one Inference per symbol.

    Args:
        evidence: Evidence from any number of functions, in any order
        max_samples: Sample evidence kept per slot
        arities: Known arity per symbol; evidence beyond it is dropped
        diagnostics: Receives one "Dropping evidence: ..." line per dropped record

    Returns:
        Inferences sorted by symbol, slots sorted by slot number
    """
    valid = []
    for item in evidence:
        arity = arities.get(item.symbol) if arities else None
        try:
            item.validate(arity)
        except MalformedEvidenceError as e:
            if diagnostics is not None:
                diagnostics.append(f"Dropping evidence: {e}")
            continue
        valid.append(item)

    valid.sort(key=_sort_key)

    inferences = []
    for symbol, run in groupby(valid, key=lambda e: e.symbol):
        slots = [merge_slot(slot, list(group), max_samples)
                 for slot, group in groupby(run, key=lambda e: e.slot)]
        inferences.append(Inference(symbol=symbol, slots=slots))
    return inferences
