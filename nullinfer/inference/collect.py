"""
Evidence collection.

Declarations contribute their explicit annotations. Function bodies are
run through the dataflow analysis; its violations and observed evidence
sites become Evidence records:

- an unchecked dereference of a parameter's entry value
- what each return statement returns
- what each call passes for the callee's pointer parameters
- a null pointer assigned to a pointer parameter
- a check that aborts unless a parameter is non-null
"""

import time
from typing import List, Optional

from nullinfer.analysis.arena import Arena, Z3Oracle
from nullinfer.analysis.dataflow import DataflowAnalysis
from nullinfer.analysis.lattice import PointerState
from nullinfer.analysis.transfer import TransferObserver
from nullinfer.inference.evidence import Evidence, EvidenceKind
from nullinfer.sil.procedure import Procedure, Program
from nullinfer.sil.types import Location, NullabilityKind


_ANNOTATION_EVIDENCE = {
    NullabilityKind.NONNULL: EvidenceKind.ANNOTATED_NONNULL,
    NullabilityKind.NULLABLE: EvidenceKind.ANNOTATED_NULLABLE,
}

_RETURN_EVIDENCE = {
    PointerState.NONNULL: EvidenceKind.NONNULL_RETURN,
    PointerState.NULL: EvidenceKind.NULLPTR_RETURNED,
    PointerState.NULLABLE: EvidenceKind.NULLABLE_RETURN,
    PointerState.UNKNOWN: EvidenceKind.UNKNOWN_RETURN,
}

_ARGUMENT_EVIDENCE = {
    PointerState.NONNULL: EvidenceKind.NONNULL_ARGUMENT,
    PointerState.NULL: EvidenceKind.NULLABLE_ARGUMENT,
    PointerState.NULLABLE: EvidenceKind.NULLABLE_ARGUMENT,
    PointerState.UNKNOWN: EvidenceKind.UNKNOWN_ARGUMENT,
}


class _EvidenceObserver(TransferObserver):
    """Turns the sites met during the reporting pass into evidence"""

    def __init__(self, proc: Procedure):
        self.proc = proc
        self.evidence: List[Evidence] = []

    def _emit(self, symbol: str, slot: int, kind: EvidenceKind, loc: Location) -> None:
        self.evidence.append(Evidence(symbol, slot, kind, str(loc)))

    def on_return(self, state: PointerState, loc: Location) -> None:
        self._emit(self.proc.usr, 0, _RETURN_EVIDENCE[state], loc)

    def on_argument(self, usr: str, slot: int, state: PointerState, loc: Location) -> None:
        self._emit(usr, slot, _ARGUMENT_EVIDENCE[state], loc)

    def on_assign_null(self, slot: int, loc: Location) -> None:
        self._emit(self.proc.usr, slot, EvidenceKind.NULLPTR_ASSIGNED, loc)

    def on_aborts_if_null(self, slot: int, loc: Location) -> None:
        self._emit(self.proc.usr, slot, EvidenceKind.ABORTS_IF_NULL, loc)


class EvidenceCollector:
    """
    Collects evidence from the declarations and definitions of a program.

    Each definition is analysed with its own arena and z3 context, so
    ``collect_definition`` may run concurrently for different functions.
    Errors raised while analysing a definition propagate to the caller.
    """

    def __init__(self, program: Program, timeout: int = 5000,
                 max_node_visits: int = 64, function_budget_ms: Optional[int] = None,
                 verbose: bool = False):
        self.program = program
        self.timeout = timeout
        self.max_node_visits = max_node_visits
        self.function_budget_ms = function_budget_ms
        self.verbose = verbose

    def collect_declarations(self) -> List[Evidence]:
        """ANNOTATED_* evidence for every annotated pointer slot of every declaration"""
        evidence = []
        for proc in self.program.declarations:
            if not proc.is_eligible():
                continue
            loc = str(proc.loc or Location.unknown())
            for slot in proc.pointer_slots():
                kind = _ANNOTATION_EVIDENCE.get(proc.slot_type(slot).nullability)
                if kind is not None:
                    evidence.append(Evidence(proc.usr, slot, kind, loc))
        if self.verbose:
            print(f"[Collect] {len(evidence)} annotation(s) from "
                  f"{len(self.program.declarations)} declaration(s)")
        return evidence

    def collect_definition(self, proc: Procedure) -> List[Evidence]:
        """Evidence from one function body"""
        deadline = None
        if self.function_budget_ms is not None:
            deadline = time.monotonic() + self.function_budget_ms / 1000.0

        arena = Arena(Z3Oracle(timeout=self.timeout))
        analysis = DataflowAnalysis(self.program, proc, arena,
                                    max_node_visits=self.max_node_visits,
                                    deadline=deadline, verbose=self.verbose)
        observer = _EvidenceObserver(proc)
        result = analysis.run(observer)

        evidence = list(observer.evidence)
        for slot in proc.pointer_slots():
            if slot == 0:
                continue
            value = f"param:{proc.params[slot - 1][0].name}"
            for violation in result.violations.for_value(value):
                evidence.append(Evidence(proc.usr, slot, EvidenceKind.UNCHECKED_DEREFERENCE,
                                         str(violation.loc)))

        if self.verbose:
            print(f"[Collect] {proc.name}: {len(evidence)} evidence, "
                  f"{arena.oracle.queries} solver queries")
        return evidence
