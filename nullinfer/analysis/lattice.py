"""
Nullability lattice and per-program-point environment.

An Environment maps program variables to value identities, and value
identities to their properties:
- not-null property: a formula that holds exactly when the value is non-null
- truth: for boolean values, a formula that holds when the value is true
- from-nullable: a formula that holds when the value came from a source
  annotated nullable
plus the flow condition of the path reaching the program point.

Value identities are strings chosen by syntactic site (``param:p``,
``call:3.0.1``, ``join:5:p``) so that re-running a node during the
fixpoint produces the same identities.
"""

from enum import Enum
from typing import Dict, List, Optional

from nullinfer.analysis.arena import Arena, Formula, Truth


class PointerState(Enum):
    """What the flow condition says about one pointer value"""
    NONNULL = "nonnull"      # provably non-null
    NULL = "null"            # provably null
    NULLABLE = "nullable"    # neither, and of nullable origin
    UNKNOWN = "unknown"      # neither


class Environment:
    """
    Abstract state at one program point.

    Environments are owned by one transfer step at a time: callers
    ``fork()`` before handing an environment to code that mutates it.
    """

    def __init__(self, arena: Arena, flow_condition: Optional[Formula] = None):
        self.arena = arena
        self.bindings: Dict[str, str] = {}
        self.not_null: Dict[str, Formula] = {}
        self.truth: Dict[str, Formula] = {}
        self.from_nullable: Dict[str, Formula] = {}
        self.flow_condition = flow_condition if flow_condition is not None else arena.true()

    def __repr__(self) -> str:
        return f"Environment(bindings={self.bindings}, fc={self.flow_condition})"

    def fork(self) -> 'Environment':
        """Independent copy"""
        env = Environment(self.arena, self.flow_condition)
        env.bindings = dict(self.bindings)
        env.not_null = dict(self.not_null)
        env.truth = dict(self.truth)
        env.from_nullable = dict(self.from_nullable)
        return env

    # =========================================================================
    # Bindings and properties
    # =========================================================================

    def lookup(self, var: str) -> Optional[str]:
        return self.bindings.get(var)

    def bind(self, var: str, value: str) -> None:
        self.bindings[var] = value

    def has_not_null(self, value: str) -> bool:
        return value in self.not_null

    def not_null_of(self, value: str) -> Formula:
        """Not-null property of a value, allocating an unconstrained atom if missing"""
        formula = self.not_null.get(value)
        if formula is None:
            formula = self.arena.atom(f"nn:{value}")
            self.not_null[value] = formula
        return formula

    def set_not_null(self, value: str, formula: Formula) -> None:
        self.not_null[value] = formula

    def truth_of(self, value: str) -> Formula:
        """
        Formula for "value is true".

        Pointers convert to their not-null property; any other value gets
        its own unconstrained atom.
        """
        formula = self.truth.get(value)
        if formula is not None:
            return formula
        formula = self.not_null.get(value)
        if formula is not None:
            return formula
        formula = self.arena.atom(f"b:{value}")
        self.truth[value] = formula
        return formula

    def set_truth(self, value: str, formula: Formula) -> None:
        self.truth[value] = formula

    def mark_nullable(self, value: str) -> None:
        self.from_nullable[value] = self.arena.true()

    def from_nullable_of(self, value: str) -> Formula:
        """From-nullable property of a value; false when never set"""
        return self.from_nullable.get(value, self.arena.false())

    def set_from_nullable(self, value: str, formula: Formula) -> None:
        if formula.is_false():
            self.from_nullable.pop(value, None)
        else:
            self.from_nullable[value] = formula

    def is_nullable_origin(self, value: str) -> bool:
        formula = self.from_nullable.get(value)
        return formula is not None and self.proves(formula)

    # =========================================================================
    # Flow condition
    # =========================================================================

    def assume(self, formula: Formula) -> None:
        """Strengthen the flow condition"""
        self.flow_condition = self.arena.and_(self.flow_condition, formula)

    def proves(self, formula: Formula) -> bool:
        return self.arena.proves(self.flow_condition, formula)

    def evaluate(self, formula: Formula) -> Truth:
        return self.arena.evaluate(self.flow_condition, formula)

    def classify(self, value: str) -> PointerState:
        """Nullability of a pointer value on the current path"""
        truth = self.evaluate(self.not_null_of(value))
        if truth == Truth.TRUE:
            return PointerState.NONNULL
        if truth == Truth.FALSE:
            return PointerState.NULL
        if self.is_nullable_origin(value):
            return PointerState.NULLABLE
        return PointerState.UNKNOWN

    # =========================================================================
    # Lattice operations
    # =========================================================================

    def equivalent_to(self, other: 'Environment') -> bool:
        """
        Same bindings and value properties.

        Flow conditions are not compared; the fixpoint converges on the
        shape of the state.
        """
        if self.bindings != other.bindings:
            return False
        if _formula_ids(self.from_nullable) != _formula_ids(other.from_nullable):
            return False
        if _formula_ids(self.not_null) != _formula_ids(other.not_null):
            return False
        return _formula_ids(self.truth) == _formula_ids(other.truth)


def join(envs: List[Environment], node_id: int) -> Environment:
    """
    Merge the environments flowing into a join node.

    A variable bound to the same value on every incoming edge keeps it.
    Any other variable is rebound to a fresh value named after the join
    node and the variable, with an unconstrained not-null atom when any
    incoming value was a pointer. Properties of a value are never merged
    across edges. Flow conditions are disjoined.
    """
    if len(envs) == 1:
        return envs[0].fork()

    arena = envs[0].arena
    result = Environment(arena, arena.or_(*[env.flow_condition for env in envs]))

    for env in envs:
        for value, formula in env.not_null.items():
            result.not_null.setdefault(value, formula)
        for value, formula in env.truth.items():
            result.truth.setdefault(value, formula)
        for value, formula in env.from_nullable.items():
            result.from_nullable.setdefault(value, formula)

    variables = set()
    for env in envs:
        variables.update(env.bindings)

    for var in sorted(variables):
        values = [env.bindings.get(var) for env in envs]
        if values[0] is not None and all(v == values[0] for v in values):
            result.bindings[var] = values[0]
            continue

        joined = f"join:{node_id}:{var}"
        result.bindings[var] = joined
        if any(v is not None and env.has_not_null(v) for v, env in zip(values, envs)):
            result.not_null_of(joined)

    return result


def _formula_ids(mapping: Dict[str, Formula]) -> Dict[str, int]:
    return {key: formula.id for key, formula in mapping.items()}
