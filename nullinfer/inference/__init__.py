"""
Evidence collection, merging, and the whole-program driver.
"""

from nullinfer.inference.evidence import (
    Evidence,
    EvidenceKind,
    Inference,
    Sample,
    SlotInference,
)
from nullinfer.inference.collect import EvidenceCollector
from nullinfer.inference.merge import combine, merge_evidence, merge_slot, resolve
from nullinfer.inference.infer import (
    InferenceReport,
    NullabilityInferencer,
    detect_language,
    infer_program,
    infer_source,
)

__all__ = [
    "Evidence", "EvidenceKind", "Inference", "Sample", "SlotInference",
    "EvidenceCollector",
    "combine", "merge_evidence", "merge_slot", "resolve",
    "InferenceReport", "NullabilityInferencer", "detect_language",
    "infer_program", "infer_source",
]
