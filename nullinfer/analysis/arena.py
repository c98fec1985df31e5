"""
Flow-condition arena.

Canonical boolean formulas over named atoms, and implication queries
against an accumulated flow condition.

Formulas are interned: building the same formula twice returns the same
object, so identity comparison is formula equality. Constructors fold
constants and double negation, and sort the operands of commutative
connectives.

Implication is decided by an oracle. The default oracle is z3; every
arena owns its own z3 context, so arenas used on different threads
never share solver state.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional, Tuple

import z3


class FormulaKind(Enum):
    """Kind of formula node"""
    TRUE = auto()
    FALSE = auto()
    ATOM = auto()
    NOT = auto()
    AND = auto()
    OR = auto()
    IFF = auto()


class Truth(Enum):
    """Answer to an implication query"""
    TRUE = "true"          # the flow condition implies the formula
    FALSE = "false"        # the flow condition implies its negation
    UNKNOWN = "unknown"    # neither, or the oracle could not decide


@dataclass(eq=False)
class Formula:
    """
    A canonical boolean formula.

    Only an Arena creates formulas; compare them with ``is``.
    """
    id: int
    kind: FormulaKind
    name: Optional[str] = None
    operands: Tuple['Formula', ...] = ()

    def __str__(self) -> str:
        if self.kind == FormulaKind.TRUE:
            return "true"
        if self.kind == FormulaKind.FALSE:
            return "false"
        if self.kind == FormulaKind.ATOM:
            return self.name
        if self.kind == FormulaKind.NOT:
            return f"!{self.operands[0]}"
        sep = {FormulaKind.AND: " & ", FormulaKind.OR: " | ", FormulaKind.IFF: " <=> "}[self.kind]
        return "(" + sep.join(str(op) for op in self.operands) + ")"

    def __repr__(self) -> str:
        return f"Formula#{self.id}({self})"

    def __hash__(self) -> int:
        return self.id

    def is_true(self) -> bool:
        return self.kind == FormulaKind.TRUE

    def is_false(self) -> bool:
        return self.kind == FormulaKind.FALSE

    def conjuncts(self) -> Tuple['Formula', ...]:
        """Top-level conjuncts (the formula itself if not a conjunction)"""
        if self.kind == FormulaKind.AND:
            return self.operands
        return (self,)


class Z3Oracle:
    """
    Implication oracle backed by z3.

    ``implies(fc, f)`` checks that ``fc & !f`` is unsatisfiable. A solver
    timeout, an ``unknown`` answer or a z3 error all mean "not proved".
    """

    def __init__(self, timeout: int = 5000):
        self.timeout = timeout
        self.ctx = z3.Context()
        self._atoms: Dict[str, z3.BoolRef] = {}
        self._encoded: Dict[int, z3.BoolRef] = {}
        self.queries = 0
        self.failures = 0

    def implies(self, fc: Formula, f: Formula) -> bool:
        self.queries += 1
        try:
            solver = z3.Solver(ctx=self.ctx)
            solver.set("timeout", self.timeout)
            solver.add(self._encode(fc))
            solver.add(z3.Not(self._encode(f)))
            result = solver.check()
        except z3.Z3Exception:
            self.failures += 1
            return False

        if result == z3.unsat:
            return True
        if result == z3.unknown:
            self.failures += 1
        return False

    def _encode(self, f: Formula) -> z3.BoolRef:
        """Convert a formula to a z3 expression (memoized per formula)"""
        cached = self._encoded.get(f.id)
        if cached is not None:
            return cached

        if f.kind == FormulaKind.TRUE:
            result = z3.BoolVal(True, ctx=self.ctx)
        elif f.kind == FormulaKind.FALSE:
            result = z3.BoolVal(False, ctx=self.ctx)
        elif f.kind == FormulaKind.ATOM:
            result = self._atoms.get(f.name)
            if result is None:
                result = z3.Bool(f.name, ctx=self.ctx)
                self._atoms[f.name] = result
        elif f.kind == FormulaKind.NOT:
            result = z3.Not(self._encode(f.operands[0]))
        elif f.kind == FormulaKind.AND:
            result = z3.And(*[self._encode(op) for op in f.operands])
        elif f.kind == FormulaKind.OR:
            result = z3.Or(*[self._encode(op) for op in f.operands])
        else:
            left, right = f.operands
            result = self._encode(left) == self._encode(right)

        self._encoded[f.id] = result
        return result


class Arena:
    """
    Owner of all formulas built during one function analysis.

    Usage:
        arena = Arena(Z3Oracle(timeout=1000))
        p = arena.atom("nn:p")
        fc = arena.and_(arena.true(), p)
        arena.evaluate(fc, p)   # Truth.TRUE
    """

    def __init__(self, oracle=None):
        self.oracle = oracle if oracle is not None else Z3Oracle()
        self._interned: Dict[tuple, Formula] = {}
        self._query_cache: Dict[Tuple[int, int], bool] = {}
        self._fresh_counter = 0
        self._true = self._intern(FormulaKind.TRUE)
        self._false = self._intern(FormulaKind.FALSE)

    def __len__(self) -> int:
        return len(self._interned)

    def _intern(self, kind: FormulaKind, name: Optional[str] = None,
                operands: Tuple[Formula, ...] = ()) -> Formula:
        key = (kind, name, tuple(op.id for op in operands))
        formula = self._interned.get(key)
        if formula is None:
            formula = Formula(id=len(self._interned), kind=kind, name=name, operands=operands)
            self._interned[key] = formula
        return formula

    # =========================================================================
    # Constructors
    # =========================================================================

    def true(self) -> Formula:
        return self._true

    def false(self) -> Formula:
        return self._false

    def literal(self, value: bool) -> Formula:
        return self._true if value else self._false

    def atom(self, name: Optional[str] = None) -> Formula:
        """
        The atom with this name; a fresh, never-seen atom if name is None.

        Two calls with the same name return the same atom.
        """
        if name is None:
            name = f"_fresh{self._fresh_counter}"
            self._fresh_counter += 1
        return self._intern(FormulaKind.ATOM, name)

    def not_(self, f: Formula) -> Formula:
        if f.kind == FormulaKind.TRUE:
            return self._false
        if f.kind == FormulaKind.FALSE:
            return self._true
        if f.kind == FormulaKind.NOT:
            return f.operands[0]
        return self._intern(FormulaKind.NOT, operands=(f,))

    def and_(self, *fs: Formula) -> Formula:
        return self._connective(FormulaKind.AND, fs)

    def or_(self, *fs: Formula) -> Formula:
        return self._connective(FormulaKind.OR, fs)

    def implies(self, a: Formula, b: Formula) -> Formula:
        """a => b, built as !a | b"""
        return self.or_(self.not_(a), b)

    def iff(self, a: Formula, b: Formula) -> Formula:
        """a <=> b"""
        if a is b:
            return self._true
        if a.is_true():
            return b
        if b.is_true():
            return a
        if a.is_false():
            return self.not_(b)
        if b.is_false():
            return self.not_(a)
        if a.id > b.id:
            a, b = b, a
        return self._intern(FormulaKind.IFF, operands=(a, b))

    def _connective(self, kind: FormulaKind, fs: Tuple[Formula, ...]) -> Formula:
        # AND: unit is true, zero is false; OR the other way round
        unit = self._true if kind == FormulaKind.AND else self._false
        zero = self._false if kind == FormulaKind.AND else self._true

        operands = {}
        for f in fs:
            parts = f.operands if f.kind == kind else (f,)
            for part in parts:
                if part is zero:
                    return zero
                if part is unit:
                    continue
                operands[part.id] = part

        # x & !x, x | !x
        for part in operands.values():
            if part.kind == FormulaKind.NOT and part.operands[0].id in operands:
                return zero

        if not operands:
            return unit
        if len(operands) == 1:
            return next(iter(operands.values()))
        ordered = tuple(operands[i] for i in sorted(operands))
        return self._intern(kind, operands=ordered)

    # =========================================================================
    # Queries
    # =========================================================================

    def proves(self, fc: Formula, f: Formula) -> bool:
        """Does the flow condition imply the formula?"""
        if f.is_true() or fc.is_false() or f is fc:
            return True
        if f.is_false():
            return False
        if f.kind != FormulaKind.AND and f in fc.conjuncts():
            return True

        key = (fc.id, f.id)
        cached = self._query_cache.get(key)
        if cached is None:
            cached = self.oracle.implies(fc, f)
            self._query_cache[key] = cached
        return cached

    def evaluate(self, fc: Formula, f: Formula) -> Truth:
        """Truth of a formula on every path the flow condition describes"""
        if self.proves(fc, f):
            return Truth.TRUE
        if self.proves(fc, self.not_(f)):
            return Truth.FALSE
        return Truth.UNKNOWN
