"""
SIL instruction definitions.

This module defines all instructions in the nullability SIL:

- Assign: Direct assignment (id = exp)
- Store: Write through a pointer (*addr = value)
- Call: Function/method call
- Prune: Conditional branch (assume) at the head of a branch target
- Return: Return from the procedure
- Metadata: No semantic effect
- Unsupported: A source construct the frontend could not lower

Dereferences that only read (``*p``, ``p->f``, ``p[i]``) stay inside
expressions; the transfer functions find them there.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
from enum import Enum, auto

from .types import Ident, PVar, Exp, ExpVar, ExpConst, Typ, Location


# =============================================================================
# Enumerations
# =============================================================================

class PruneKind(Enum):
    """Kind of prune instruction (what control flow construct it came from)"""
    IF_TRUE = auto()      # True branch of if statement
    IF_FALSE = auto()     # False branch of if statement
    LOOP_ENTER = auto()   # Loop entry condition
    LOOP_EXIT = auto()    # Loop exit condition
    FOR_ENTER = auto()    # For loop entry
    FOR_EXIT = auto()     # For loop exit


# =============================================================================
# Base Instruction
# =============================================================================

@dataclass
class Instr:
    """
    Base class for all SIL instructions.

    Every instruction has a source location for evidence provenance.
    """
    loc: Location

    def __str__(self) -> str:
        return "<instr>"


# =============================================================================
# Memory and Assignment
# =============================================================================

@dataclass
class Store(Instr):
    """
    Store through a pointer: *addr = value

    ``addr`` is the pointer being dereferenced (``p`` for ``*p = v`` and
    ``p->f = v``, ``a`` for ``a[i] = v``).
    """
    addr: Exp               # Pointer written through
    value: Exp              # Value to store
    typ: Typ                # Type of stored value

    def __str__(self) -> str:
        return f"*{self.addr} = {self.value} : {self.typ}"


@dataclass
class Assign(Instr):
    """
    Direct assignment: id = exp (no memory access)

    Assigning to a fresh Ident is also how expression statements whose
    value is discarded (``*p;``) are kept in the CFG.
    """
    id: Union[Ident, PVar]  # Destination
    exp: Exp                # Source expression

    def __str__(self) -> str:
        return f"{self.id} = {self.exp}"


# =============================================================================
# Control Flow Instructions
# =============================================================================

@dataclass
class Prune(Instr):
    """
    Conditional prune: assume(condition)

    Placed first in the node a branch edge leads to. For an if statement:

        if (p) { A } else { B }

    Becomes:
        Node1 -> Node2: prune(p, true);  A
        Node1 -> Node3: prune(p, false); B
    """
    condition: Exp          # Condition to assume
    is_true_branch: bool    # True = assume condition, False = assume negation
    kind: PruneKind = PruneKind.IF_TRUE

    def __str__(self) -> str:
        branch = "true" if self.is_true_branch else "false"
        return f"prune({self.condition}, {branch})"


@dataclass
class Return(Instr):
    """
    Return from function.

    Optional return value for non-void functions.
    """
    value: Optional[Exp] = None

    def __str__(self) -> str:
        if self.value:
            return f"return {self.value}"
        return "return"


# =============================================================================
# Function Call
# =============================================================================

@dataclass
class Call(Instr):
    """
    Function call: ret = func(args)

    ``func`` is the callee name as a string constant for direct calls, or
    an arbitrary expression (``obj->method``) otherwise.
    """
    ret: Optional[Tuple[Ident, Typ]]  # Return value (None for void)
    func: Exp                          # Function to call (name or expression)
    args: List[Tuple[Exp, Typ]]       # Arguments with types

    def __str__(self) -> str:
        args_str = ", ".join(f"{e}" for e, t in self.args)
        call_str = f"{self.get_func_name()}({args_str})"
        if self.ret:
            return f"{self.ret[0]} = {call_str}"
        return call_str

    def get_func_name(self) -> str:
        """Get the function name as a string"""
        if isinstance(self.func, ExpConst) and isinstance(self.func.value, str):
            return self.func.value
        if isinstance(self.func, ExpVar):
            return str(self.func.var)
        return str(self.func)


# =============================================================================
# Additional Instructions
# =============================================================================

@dataclass
class Metadata(Instr):
    """
    Metadata instruction (no semantic effect).

    Used for:
    - Source mapping
    - Scope markers
    """
    kind: str
    data: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"// {self.kind}: {self.data}"


@dataclass
class Unsupported(Instr):
    """
    A source construct the frontend cannot lower (goto, throw, asm, ...).

    The transfer dispatcher rejects it, which skips the whole procedure.
    """
    construct: str

    def __str__(self) -> str:
        return f"unsupported({self.construct})"
