"""
Flow-sensitive nullability analysis of one function body.

Components:
- arena: canonical boolean formulas and the z3 implication oracle
- lattice: per-program-point environment (value properties, flow condition)
- transfer: transfer functions for SIL instructions and expressions
- violations: unchecked dereference sites
- dataflow: the fixpoint driver
"""

from nullinfer.analysis.arena import Arena, Formula, FormulaKind, Truth, Z3Oracle
from nullinfer.analysis.lattice import Environment, PointerState, join
from nullinfer.analysis.transfer import (
    TransferFunctions,
    TransferObserver,
    EXPRESSION_CASES,
    INSTRUCTION_KINDS,
    check_transfer_table,
)
from nullinfer.analysis.violations import Violation, ViolationCollector
from nullinfer.analysis.dataflow import DataflowAnalysis, DataflowResult

__all__ = [
    "Arena", "Formula", "FormulaKind", "Truth", "Z3Oracle",
    "Environment", "PointerState", "join",
    "TransferFunctions", "TransferObserver", "EXPRESSION_CASES",
    "INSTRUCTION_KINDS", "check_transfer_table",
    "Violation", "ViolationCollector",
    "DataflowAnalysis", "DataflowResult",
]
