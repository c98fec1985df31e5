"""
Pointer Nullability Inference using Z3

Infers, for the pointer parameters and return values of C and C++
functions, whether each is non-null, nullable, or unconstrained, without
requiring every signature to be annotated.

The library is organized into logical modules:
- sil: intermediate language, library specs, and tree-sitter frontends
- analysis: flow-condition arena, environment, transfer functions, dataflow
- inference: evidence collection, evidence merging, whole-program driver
- errors: exception taxonomy
"""

from nullinfer.sil.types import NullabilityKind
from nullinfer.errors import (
    NullabilityError, UnsupportedConstructError, AnalysisBudgetExceeded,
    MalformedEvidenceError, TransferTableError,
)
from nullinfer.inference import (
    Evidence, EvidenceKind, Inference, SlotInference,
    EvidenceCollector, InferenceReport, NullabilityInferencer,
    combine, merge_evidence, infer_program, infer_source,
)

__version__ = "0.0.1"
__all__ = [
    "NullabilityKind",
    # Errors
    "NullabilityError", "UnsupportedConstructError", "AnalysisBudgetExceeded",
    "MalformedEvidenceError", "TransferTableError",
    # Evidence and inference
    "Evidence", "EvidenceKind", "Inference", "SlotInference",
    "EvidenceCollector", "InferenceReport", "NullabilityInferencer",
    "combine", "merge_evidence", "infer_program", "infer_source",
]
