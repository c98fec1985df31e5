"""
Transfer functions for the nullability dataflow.

Instructions are dispatched through a total table keyed by instruction
class; ``check_transfer_table()`` runs at import and fails loudly if an
instruction kind has no handler.

Expressions are evaluated by an ordered list of (predicate, handler)
cases. The first case whose predicate matches wins; an expression no case
matches yields a fresh value and performs no transfer.

Evaluating an expression returns a value identity (a string) and may
update the environment: bind not-null or truth properties, strengthen the
flow condition, and report dereference violations and evidence sites to
the attached collectors.
"""

from typing import Callable, Dict, List, Optional, Tuple

from nullinfer.analysis.arena import Arena, Formula
from nullinfer.analysis.lattice import Environment, PointerState
from nullinfer.analysis.violations import ViolationCollector
from nullinfer.errors import TransferTableError, UnsupportedConstructError
from nullinfer.sil.instructions import (
    Instr, Assign, Store, Call, Prune, Return, Metadata, Unsupported,
)
from nullinfer.sil.procedure import Node, Procedure, ProcSpec, Program
from nullinfer.sil.types import (
    Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp, ExpFieldAccess, ExpIndex,
    ExpCast, ExpCall, ExpTernary, PVar, Location, NullabilityKind,
    TypeKind,
)


# Every instruction kind the frontends produce
INSTRUCTION_KINDS = (Assign, Store, Call, Prune, Return, Metadata, Unsupported)

NULL_VALUE = "null"

# Binding of the returned value; "$" keeps it apart from source names
RETURN_KEY = "$return"


class TransferObserver:
    """
    Receiver for the evidence sites met while executing a function body.

    The dataflow driver attaches an observer only on its final pass, so
    each syntactic site is reported once.
    """

    def on_return(self, state: PointerState, loc: Location) -> None:
        pass

    def on_argument(self, usr: str, slot: int, state: PointerState, loc: Location) -> None:
        pass

    def on_assign_null(self, slot: int, loc: Location) -> None:
        pass

    def on_aborts_if_null(self, slot: int, loc: Location) -> None:
        pass


def var_key(var) -> str:
    """Environment key of a program variable or temporary"""
    if isinstance(var, PVar):
        return var.name
    return str(var)


def is_null_constant(exp: Exp) -> bool:
    """Null literal, or the integer 0 (possibly cast) in a pointer context"""
    while isinstance(exp, ExpCast):
        exp = exp.exp
    if not isinstance(exp, ExpConst):
        return False
    if exp.value is None:
        return True
    return exp.value == 0 and type(exp.value) is int


class TransferFunctions:
    """
    Transfer functions of one procedure.

    Not shared between threads: each function analysis builds its own.

    Usage:
        transfer = TransferFunctions(program, proc, arena)
        env = transfer.exec_node(node, env, violations, observer)
    """

    def __init__(self, program: Program, proc: Procedure, arena: Arena):
        self.program = program
        self.proc = proc
        self.arena = arena

        self.violations: Optional[ViolationCollector] = None
        self.observer: Optional[TransferObserver] = None

        self._site_prefix = ""
        self._site_count = 0
        self._loc = proc.loc or Location.unknown()

    # =========================================================================
    # Nodes and instructions
    # =========================================================================

    def exec_node(self, node: Node, env: Environment,
                  violations: Optional[ViolationCollector] = None,
                  observer: Optional[TransferObserver] = None) -> Environment:
        """Run every instruction of a node; env is consumed and returned updated"""
        self.violations = violations
        self.observer = observer
        try:
            for idx, instr in enumerate(node.instrs):
                self._site_prefix = f"{node.id}.{idx}"
                self._site_count = 0
                env = self.exec_instr(instr, env)
        finally:
            self.violations = None
            self.observer = None
        return env

    def exec_instr(self, instr: Instr, env: Environment) -> Environment:
        handler = _INSTRUCTION_HANDLERS.get(type(instr))
        if handler is None:
            raise UnsupportedConstructError(type(instr).__name__, instr.loc)
        self._loc = instr.loc
        return handler(self, instr, env)

    def _exec_assign(self, instr: Assign, env: Environment) -> Environment:
        """id = exp"""
        typ = None
        if isinstance(instr.id, PVar):
            typ = self.proc.var_type(instr.id.name)

        if typ is not None and typ.is_pointer():
            value = self.eval_pointer(instr.exp, env)
        else:
            value = self.eval_exp(instr.exp, env)
        env.bind(var_key(instr.id), value)

        if self.observer is not None and isinstance(instr.id, PVar):
            slot = self._pointer_param_slot(instr.id.name)
            if slot is not None and env.classify(value) == PointerState.NULL:
                self.observer.on_assign_null(slot, instr.loc)
        return env

    def _exec_store(self, instr: Store, env: Environment) -> Environment:
        """*addr = value"""
        if self._is_array_var(instr.addr):
            self.eval_exp(instr.addr, env)
        else:
            pointer = self.eval_pointer(instr.addr, env)
            self._check_deref(pointer, env, instr.loc)
        self.eval_exp(instr.value, env)
        return env

    def _exec_call(self, instr: Call, env: Environment) -> Environment:
        """ret = f(args)"""
        value = self._apply_call(instr.func, [arg for arg, _ in instr.args], env, instr.loc)
        if instr.ret:
            env.bind(var_key(instr.ret[0]), value)
        return env

    def _exec_prune(self, instr: Prune, env: Environment) -> Environment:
        """assume(condition) or assume(!condition)"""
        value = self.eval_exp(instr.condition, env)
        truth = env.truth_of(value)
        env.assume(truth if instr.is_true_branch else self.arena.not_(truth))
        return env

    def _exec_return(self, instr: Return, env: Environment) -> Environment:
        if instr.value is None:
            return env
        ret_type = self.proc.ret_type
        if ret_type is not None and ret_type.is_pointer():
            value = self.eval_pointer(instr.value, env)
            if self.observer is not None:
                self.observer.on_return(env.classify(value), instr.loc)
        else:
            value = self.eval_exp(instr.value, env)
        env.bind(RETURN_KEY, value)
        return env

    def _exec_metadata(self, instr: Metadata, env: Environment) -> Environment:
        return env

    def _exec_unsupported(self, instr: Unsupported, env: Environment) -> Environment:
        raise UnsupportedConstructError(instr.construct, instr.loc)

    # =========================================================================
    # Expressions
    # =========================================================================

    def eval_exp(self, exp: Exp, env: Environment) -> str:
        """Value identity of an expression"""
        for _, predicate, handler in EXPRESSION_CASES:
            if predicate(self, exp):
                return handler(self, exp, env)
        return self._fresh("val")

    def eval_pointer(self, exp: Exp, env: Environment) -> str:
        """Evaluate in a pointer context, where a literal 0 is the null pointer"""
        if is_null_constant(exp):
            return self._null_value(env)
        return self.eval_exp(exp, env)

    def _eval_null(self, exp: ExpConst, env: Environment) -> str:
        return self._null_value(env)

    def _eval_string(self, exp: ExpConst, env: Environment) -> str:
        value = self._fresh("str")
        env.set_not_null(value, self.arena.true())
        return value

    def _eval_const(self, exp: ExpConst, env: Environment) -> str:
        if isinstance(exp.value, bool):
            value = "const:true" if exp.value else "const:false"
            env.set_truth(value, self.arena.literal(exp.value))
            return value
        return f"const:{exp.value}"

    def _eval_var(self, exp: ExpVar, env: Environment) -> str:
        key = var_key(exp.var)
        typ = self.proc.var_type(key) if isinstance(exp.var, PVar) else None

        value = env.lookup(key)
        if value is None:
            # First read of a variable nothing has assigned yet
            value = f"var:{key}"
            env.bind(key, value)
            if typ is not None and typ.is_pointer() and not env.has_not_null(value):
                if typ.nullability == NullabilityKind.NONNULL:
                    env.set_not_null(value, self.arena.true())
                elif typ.nullability == NullabilityKind.NULLABLE:
                    env.mark_nullable(value)

        if typ is not None and typ.is_pointer():
            env.not_null_of(value)
        return value

    def _eval_address_of(self, exp: ExpUnOp, env: Environment) -> str:
        self.eval_exp(exp.operand, env)
        value = self._fresh("addr")
        env.set_not_null(value, self.arena.true())
        return value

    def _eval_deref(self, exp: Exp, env: Environment) -> str:
        """*p, p->f and p[i]: the pointer must be non-null"""
        if isinstance(exp, ExpUnOp):
            base = exp.operand
        else:
            base = exp.base
        pointer = self.eval_pointer(base, env)
        if isinstance(exp, ExpIndex):
            self.eval_exp(exp.index, env)
        self._check_deref(pointer, env, exp.loc or self._loc)
        return self._fresh("deref")

    def _eval_not(self, exp: ExpUnOp, env: Environment) -> str:
        operand = self.eval_exp(exp.operand, env)
        value = self._fresh("not")
        env.set_truth(value, self.arena.not_(env.truth_of(operand)))
        return value

    def _eval_logical(self, exp: ExpBinOp, env: Environment) -> str:
        """Short-circuit && and ||: the right side runs only under its guard"""
        left = env.truth_of(self.eval_exp(exp.left, env))
        guard = left if exp.op == "&&" else self.arena.not_(left)
        right = env.truth_of(self._eval_under(exp.right, guard, env))

        value = self._fresh("logic")
        if exp.op == "&&":
            env.set_truth(value, self.arena.and_(left, right))
        else:
            env.set_truth(value, self.arena.or_(left, right))
        return value

    def _eval_equality(self, exp: ExpBinOp, env: Environment) -> str:
        return self._compare(exp.op, exp.left, exp.right, env)

    def _eval_binop(self, exp: ExpBinOp, env: Environment) -> str:
        self.eval_exp(exp.left, env)
        self.eval_exp(exp.right, env)
        return self._fresh("op")

    def _eval_unop(self, exp: ExpUnOp, env: Environment) -> str:
        self.eval_exp(exp.operand, env)
        return self._fresh("op")

    def _eval_cast(self, exp: ExpCast, env: Environment) -> str:
        if exp.typ.is_pointer():
            return self.eval_pointer(exp.exp, env)
        return self.eval_exp(exp.exp, env)

    def _eval_ternary(self, exp: ExpTernary, env: Environment) -> str:
        cond = env.truth_of(self.eval_exp(exp.condition, env))
        not_cond = self.arena.not_(cond)
        then_value = self._eval_under(exp.true_exp, cond, env, pointer=True)
        else_value = self._eval_under(exp.false_exp, not_cond, env, pointer=True)

        value = self._fresh("cond")
        if env.has_not_null(then_value) or env.has_not_null(else_value):
            env.set_not_null(value, self.arena.or_(
                self.arena.and_(cond, env.not_null_of(then_value)),
                self.arena.and_(not_cond, env.not_null_of(else_value))))
            env.set_from_nullable(value, self.arena.or_(
                self.arena.and_(cond, env.from_nullable_of(then_value)),
                self.arena.and_(not_cond, env.from_nullable_of(else_value))))
        else:
            env.set_truth(value, self.arena.or_(
                self.arena.and_(cond, env.truth_of(then_value)),
                self.arena.and_(not_cond, env.truth_of(else_value))))
        return value

    def _eval_call(self, exp: ExpCall, env: Environment) -> str:
        return self._apply_call(exp.func, exp.args, env, exp.loc or self._loc)

    def _eval_field(self, exp: ExpFieldAccess, env: Environment) -> str:
        self.eval_exp(exp.base, env)
        return self._fresh("field")

    def _eval_array_index(self, exp: ExpIndex, env: Environment) -> str:
        self.eval_exp(exp.base, env)
        self.eval_exp(exp.index, env)
        return self._fresh("elem")

    # =========================================================================
    # Calls
    # =========================================================================

    def _apply_call(self, func: Exp, args: List[Exp], env: Environment,
                    loc: Location) -> str:
        name = self._callee_name(func, env)
        callee = self.program.lookup_callee(name, len(args)) if name else None

        values = []
        for i, arg in enumerate(args):
            param_type = callee.slot_type(i + 1) if callee is not None else None
            if param_type is not None and param_type.is_pointer():
                value = self.eval_pointer(arg, env)
                if self.observer is not None:
                    self.observer.on_argument(callee.usr, i + 1, env.classify(value),
                                              arg.loc or loc)
            else:
                value = self.eval_exp(arg, env)
            values.append(value)

        if callee is not None:
            value = self._fresh("call")
            if callee.ret_type is not None and callee.ret_type.is_pointer():
                kind = self.program.annotation(callee.usr, 0)
                if kind == NullabilityKind.NONNULL:
                    env.set_not_null(value, self.arena.true())
                else:
                    env.not_null_of(value)
                    if kind == NullabilityKind.NULLABLE:
                        env.mark_nullable(value)
            return value

        spec = self.program.get_spec(name) if name else None
        if spec is not None and spec.aborts_if_null:
            return self._apply_check(name, spec, args, values, env, loc)

        value = self._fresh("call")
        if spec is not None:
            if spec.returns_nonnull:
                env.set_not_null(value, self.arena.true())
            elif spec.may_return_null:
                env.not_null_of(value)
                env.mark_nullable(value)
        return value

    def _apply_check(self, name: str, spec: ProcSpec, args: List[Exp], values: List[str],
                     env: Environment, loc: Location) -> str:
        """assert(c), CHECK(c), CHECK_NE(a, b): execution continues only if the check holds"""
        if not values:
            return self._fresh("call")

        if name.endswith("_NE") and len(values) >= 2:
            condition = self.arena.not_(self._pointer_equality(
                args[0], args[1], values[0], values[1], env))
        else:
            index = spec.condition_args[0] if spec.condition_args else 0
            condition = env.truth_of(values[index] if index < len(values) else values[0])

        watched = []
        if self.observer is not None:
            for slot in self.proc.pointer_slots():
                if slot == 0:
                    continue
                not_null = env.not_null_of(f"param:{self.proc.params[slot - 1][0].name}")
                if not env.proves(not_null):
                    watched.append((slot, not_null))

        env.assume(condition)

        for slot, not_null in watched:
            if env.proves(not_null):
                self.observer.on_aborts_if_null(slot, loc)

        if name.endswith("CHECK_NOTNULL"):
            return values[0]
        return self._fresh("call")

    def _callee_name(self, func: Exp, env: Environment) -> Optional[str]:
        if isinstance(func, ExpConst) and isinstance(func.value, str):
            return func.value
        if isinstance(func, ExpFieldAccess):
            # obj->method(): the receiver is dereferenced
            self.eval_exp(func, env)
            return func.field_name
        if isinstance(func, ExpVar):
            return var_key(func.var)
        self.eval_exp(func, env)
        return None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _compare(self, op: str, left: Exp, right: Exp, env: Environment) -> str:
        """== and !=; pointer comparisons correlate with the operands' not-null atoms"""
        left_null = is_null_constant(left)
        right_null = is_null_constant(right)
        lhs = self._null_value(env) if left_null else self.eval_exp(left, env)
        rhs = self._null_value(env) if right_null else self.eval_exp(right, env)

        if left_null or right_null or env.has_not_null(lhs) or env.has_not_null(rhs):
            equal = self._pointer_equality(left, right, lhs, rhs, env)
        else:
            equal = self.arena.atom(f"cmp:{self._site()}")

        value = self._fresh("cmp")
        env.set_truth(value, equal if op == "==" else self.arena.not_(equal))
        return value

    def _pointer_equality(self, left: Exp, right: Exp, lhs: str, rhs: str,
                          env: Environment) -> Formula:
        """
        Atom for "lhs == rhs", tied into the flow condition:
            both null         => equal
            exactly one null  => not equal
        """
        if is_null_constant(left):
            lhs = self._null_value(env)
        if is_null_constant(right):
            rhs = self._null_value(env)

        arena = self.arena
        equal = arena.atom(f"cmp:{self._site()}")
        l, r = env.not_null_of(lhs), env.not_null_of(rhs)
        env.assume(arena.implies(arena.and_(arena.not_(l), arena.not_(r)), equal))
        env.assume(arena.implies(arena.and_(arena.not_(l), r), arena.not_(equal)))
        env.assume(arena.implies(arena.and_(l, arena.not_(r)), arena.not_(equal)))
        return equal

    def _eval_under(self, exp: Exp, guard: Formula, env: Environment,
                    pointer: bool = False) -> str:
        """Evaluate exp on the paths where guard holds"""
        saved = env.flow_condition
        env.assume(guard)
        guarded = env.flow_condition
        value = self.eval_pointer(exp, env) if pointer else self.eval_exp(exp, env)
        after = env.flow_condition
        if after is guarded:
            env.flow_condition = saved
        else:
            env.flow_condition = self.arena.and_(saved, self.arena.implies(guard, after))
        return value

    def _check_deref(self, pointer: str, env: Environment, loc: Location) -> None:
        if self.violations is None:
            return
        if not env.proves(env.not_null_of(pointer)):
            self.violations.record(loc, pointer)

    def _null_value(self, env: Environment) -> str:
        if not env.has_not_null(NULL_VALUE):
            env.set_not_null(NULL_VALUE, self.arena.false())
        return NULL_VALUE

    def _is_array_var(self, exp: Exp) -> bool:
        if not isinstance(exp, ExpVar) or not isinstance(exp.var, PVar):
            return False
        typ = self.proc.var_type(exp.var.name)
        return typ is not None and typ.kind == TypeKind.ARRAY

    def _pointer_param_slot(self, name: str) -> Optional[int]:
        slot = self.proc.param_slot(name)
        if slot is None:
            return None
        typ = self.proc.slot_type(slot)
        return slot if typ is not None and typ.is_pointer() else None

    def _site(self) -> str:
        site = f"{self._site_prefix}.{self._site_count}"
        self._site_count += 1
        return site

    def _fresh(self, prefix: str) -> str:
        return f"{prefix}:{self._site()}"


# =============================================================================
# Dispatch tables
# =============================================================================

def _is_deref(transfer: TransferFunctions, exp: Exp) -> bool:
    if isinstance(exp, ExpUnOp):
        return exp.op == "*"
    if isinstance(exp, ExpFieldAccess):
        return exp.is_arrow
    if isinstance(exp, ExpIndex):
        return not transfer._is_array_var(exp.base)
    return False


# Ordered: the first matching case handles the expression
EXPRESSION_CASES: List[Tuple[str, Callable, Callable]] = [
    ("null literal",
     lambda t, e: isinstance(e, ExpConst) and e.value is None,
     TransferFunctions._eval_null),
    ("string literal",
     lambda t, e: isinstance(e, ExpConst) and isinstance(e.value, str) and e.typ.is_pointer(),
     TransferFunctions._eval_string),
    ("constant",
     lambda t, e: isinstance(e, ExpConst),
     TransferFunctions._eval_const),
    ("variable reference",
     lambda t, e: isinstance(e, ExpVar),
     TransferFunctions._eval_var),
    ("address-of",
     lambda t, e: isinstance(e, ExpUnOp) and e.op == "&",
     TransferFunctions._eval_address_of),
    ("dereference",
     _is_deref,
     TransferFunctions._eval_deref),
    ("logical not",
     lambda t, e: isinstance(e, ExpUnOp) and e.op == "!",
     TransferFunctions._eval_not),
    ("short-circuit",
     lambda t, e: isinstance(e, ExpBinOp) and e.op in ("&&", "||"),
     TransferFunctions._eval_logical),
    ("equality",
     lambda t, e: isinstance(e, ExpBinOp) and e.op in ("==", "!="),
     TransferFunctions._eval_equality),
    ("binary operator",
     lambda t, e: isinstance(e, ExpBinOp),
     TransferFunctions._eval_binop),
    ("unary operator",
     lambda t, e: isinstance(e, ExpUnOp),
     TransferFunctions._eval_unop),
    ("cast",
     lambda t, e: isinstance(e, ExpCast),
     TransferFunctions._eval_cast),
    ("ternary",
     lambda t, e: isinstance(e, ExpTernary),
     TransferFunctions._eval_ternary),
    ("call",
     lambda t, e: isinstance(e, ExpCall),
     TransferFunctions._eval_call),
    ("member access",
     lambda t, e: isinstance(e, ExpFieldAccess),
     TransferFunctions._eval_field),
    ("array element",
     lambda t, e: isinstance(e, ExpIndex),
     TransferFunctions._eval_array_index),
]

_INSTRUCTION_HANDLERS: Dict[type, Callable] = {
    Assign: TransferFunctions._exec_assign,
    Store: TransferFunctions._exec_store,
    Call: TransferFunctions._exec_call,
    Prune: TransferFunctions._exec_prune,
    Return: TransferFunctions._exec_return,
    Metadata: TransferFunctions._exec_metadata,
    Unsupported: TransferFunctions._exec_unsupported,
}


def check_transfer_table(handlers: Optional[Dict[type, Callable]] = None) -> None:
    """Fail unless every instruction kind has a registered handler"""
    if handlers is None:
        handlers = _INSTRUCTION_HANDLERS
    missing = [kind.__name__ for kind in INSTRUCTION_KINDS if kind not in handlers]
    if missing:
        raise TransferTableError(f"no transfer handler for: {', '.join(missing)}")
    for kind, handler in handlers.items():
        if not callable(handler):
            raise TransferTableError(f"handler for {kind.__name__} is not callable")


check_transfer_table()
