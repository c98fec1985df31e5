"""
Per-function forward dataflow over the SIL CFG.

The fixpoint runs a worklist ordered by reverse postorder. A node's input
is the join of the outputs of its already-visited predecessors; its
output is always stored but only propagated to successors when it is not
equivalent to the previous one (bindings and value properties, not flow
conditions).

Once converged, a single reporting pass re-runs every reachable node with
the violation collector and the evidence observer attached, so each
syntactic site is reported exactly once.
"""

import heapq
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from nullinfer.analysis.arena import Arena, Formula
from nullinfer.analysis.lattice import Environment, join
from nullinfer.analysis.transfer import RETURN_KEY, TransferFunctions, TransferObserver
from nullinfer.analysis.violations import ViolationCollector
from nullinfer.errors import AnalysisBudgetExceeded
from nullinfer.sil.procedure import Node, Procedure, Program
from nullinfer.sil.types import NullabilityKind


@dataclass(frozen=True)
class SymbolicNullability:
    """Atoms standing for the unknown annotation of one parameter"""
    nonnull: Formula
    nullable: Formula


@dataclass
class DataflowResult:
    """Outcome of analysing one function body"""
    proc_name: str
    exit_node: Optional[int] = None
    outputs: Dict[int, Environment] = field(default_factory=dict)
    violations: ViolationCollector = field(default_factory=ViolationCollector)
    visits: int = 0

    def output_of(self, node_id: int) -> Optional[Environment]:
        return self.outputs.get(node_id)

    def exit_env(self) -> Optional[Environment]:
        if self.exit_node is None:
            return None
        return self.outputs.get(self.exit_node)

    def return_value(self) -> Optional[str]:
        """Value identity returned on every path reaching the exit"""
        env = self.exit_env()
        return env.lookup(RETURN_KEY) if env is not None else None


class DataflowAnalysis:
    """
    Nullability dataflow of one procedure.

    Usage:
        analysis = DataflowAnalysis(program, proc, Arena())
        result = analysis.run(observer)
        for violation in result.violations:
            print(violation)
    """

    def __init__(self, program: Program, proc: Procedure, arena: Arena,
                 max_node_visits: int = 64, deadline: Optional[float] = None,
                 verbose: bool = False):
        self.program = program
        self.proc = proc
        self.arena = arena
        self.max_node_visits = max_node_visits
        self.deadline = deadline
        self.verbose = verbose
        self.transfer = TransferFunctions(program, proc, arena)
        self.symbolic: Dict[str, SymbolicNullability] = {}

    def assign_nullability_variable(self, param: str) -> SymbolicNullability:
        """
        Bind the nullability of a pointer parameter to fresh atoms.

        The entry state assumes the parameter non-null when ``nonnull``
        holds and makes it from-nullable exactly when ``nullable`` holds,
        in place of any written annotation. Properties derived from the
        parameter stay linked to the atoms by formula, so the nullability
        of, e.g., the return value can be read as a function of them.
        """
        slot = self.proc.param_slot(param)
        typ = self.proc.slot_type(slot) if slot is not None else None
        if typ is None or not typ.is_pointer():
            raise ValueError(f"{self.proc.name} has no pointer parameter '{param}'")
        symbolic = SymbolicNullability(
            nonnull=self.arena.atom(f"sym:nonnull:{param}"),
            nullable=self.arena.atom(f"sym:nullable:{param}"),
        )
        self.symbolic[param] = symbolic
        return symbolic

    def initial_env(self) -> Environment:
        """Every parameter bound to its own value; annotations seed the entry state"""
        env = Environment(self.arena)
        for slot, (param, typ) in enumerate(self.proc.params, start=1):
            value = f"param:{param.name}"
            env.bind(param.name, value)
            if not typ.is_pointer():
                continue
            not_null = env.not_null_of(value)
            symbolic = self.symbolic.get(param.name)
            if symbolic is not None:
                env.assume(self.arena.implies(symbolic.nonnull, not_null))
                env.assume(self.arena.not_(self.arena.and_(symbolic.nonnull, symbolic.nullable)))
                env.set_from_nullable(value, symbolic.nullable)
                continue
            kind = self.program.annotation(self.proc.usr, slot)
            if kind == NullabilityKind.NONNULL:
                env.assume(not_null)
            elif kind == NullabilityKind.NULLABLE:
                env.mark_nullable(value)
        return env

    def run(self, observer: Optional[TransferObserver] = None) -> DataflowResult:
        result = DataflowResult(proc_name=self.proc.name, exit_node=self.proc.exit_node)
        order = self.proc.reverse_postorder()
        if not order:
            return result

        entry_env = self.initial_env()
        self._fixpoint(order, entry_env, result)

        if self.verbose:
            print(f"[Dataflow] {self.proc.name}: converged after {result.visits} node visits")

        for node in order:
            env = self._input(node, entry_env, result.outputs)
            if env is not None:
                self.transfer.exec_node(node, env, result.violations, observer)

        if self.verbose and len(result.violations):
            print(f"[Dataflow] {self.proc.name}: {len(result.violations)} unchecked dereference(s)")
        return result

    def _fixpoint(self, order: List[Node], entry_env: Environment,
                  result: DataflowResult) -> None:
        index = {node.id: i for i, node in enumerate(order)}
        visits: Dict[int, int] = {}

        worklist = [0]
        pending = {0}
        while worklist:
            i = heapq.heappop(worklist)
            pending.discard(i)
            node = order[i]

            visits[node.id] = visits.get(node.id, 0) + 1
            result.visits += 1
            self._check_budget(node, visits[node.id])

            env = self._input(node, entry_env, result.outputs)
            if env is None:
                continue
            env = self.transfer.exec_node(node, env)

            previous = result.outputs.get(node.id)
            result.outputs[node.id] = env
            if previous is not None and previous.equivalent_to(env):
                continue

            for succ_id in node.succs:
                j = index.get(succ_id)
                if j is not None and j not in pending:
                    heapq.heappush(worklist, j)
                    pending.add(j)

    def _input(self, node: Node, entry_env: Environment,
               outputs: Dict[int, Environment]) -> Optional[Environment]:
        """Join of the visited predecessors' outputs (forked)"""
        incoming = []
        if node.id == self.proc.entry_node:
            incoming.append(entry_env)
        for pred_id in node.preds:
            env = outputs.get(pred_id)
            if env is not None:
                incoming.append(env)
        if not incoming:
            return None
        return join(incoming, node.id)

    def _check_budget(self, node: Node, visits: int) -> None:
        if visits > self.max_node_visits:
            raise AnalysisBudgetExceeded(
                f"node {node.id} visited more than "
                f"{self.max_node_visits} times")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise AnalysisBudgetExceeded("time budget exceeded")
