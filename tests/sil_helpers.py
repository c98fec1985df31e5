"""
Helpers for building SIL programs by hand in tests.

This file is named to NOT match pytest's test collection pattern so it is
imported, not collected.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from typing import List, Optional, Sequence, Tuple

from nullinfer.sil.types import (
    Exp, ExpVar, ExpConst, Ident, PVar, Location, NullabilityKind, Typ,
)
from nullinfer.sil.instructions import Assign, Instr, Prune, PruneKind, Return
from nullinfer.sil.procedure import NodeKind, Procedure, Program


FILE = "input.cc"


def L(line: int, column: int = 1) -> Location:
    """Location in the test file"""
    return Location(FILE, line, column)


def ptr(nullability: NullabilityKind = NullabilityKind.UNKNOWN) -> Typ:
    """int * with an optional annotation"""
    return Typ.pointer_to(Typ.int_type(), nullability)


NONNULL_PTR = NullabilityKind.NONNULL
NULLABLE_PTR = NullabilityKind.NULLABLE


def declare(program: Program, name: str, params: Sequence[Tuple[str, Typ]] = (),
            ret_type: Optional[Typ] = None, line: int = 1) -> Procedure:
    """Add a bodiless declaration"""
    proc = Procedure(
        name=name,
        params=[(PVar(n), t) for n, t in params],
        ret_type=ret_type,
        loc=L(line),
    )
    program.add_procedure(proc)
    return proc


class ProcBuilder:
    """
    Builds a function definition block by block.

    Usage:
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.emit(Assign(L(1, 5), Ident("expr"), deref(var("p"), L(1, 5))))
        proc = body.done()
    """

    def __init__(self, program: Program, name: str,
                 params: Sequence[Tuple[str, Typ]] = (),
                 ret_type: Optional[Typ] = None, line: int = 1):
        self.proc = Procedure(
            name=name,
            params=[(PVar(n), t) for n, t in params],
            ret_type=ret_type,
            has_body=True,
            loc=L(line),
        )
        entry = self.proc.new_node(NodeKind.ENTRY)
        self.proc.add_node(entry)
        self.proc.entry_node = entry.id
        exit_node = self.proc.new_node(NodeKind.EXIT)
        self.proc.add_node(exit_node)
        self.proc.exit_node = exit_node.id

        self.current = entry
        self._counter = 0
        program.add_procedure(self.proc)

    def emit(self, *instrs: Instr) -> 'ProcBuilder':
        """Append instructions to the current block; a Return ends it"""
        for instr in instrs:
            self.current.add_instr(instr)
            if isinstance(instr, Return):
                self.proc.connect(self.current.id, self.proc.exit_node)
                self.current = self._new_block()
        return self

    def if_(self, condition: Exp, then: List[Instr], otherwise: List[Instr] = (),
            loc: Optional[Location] = None) -> 'ProcBuilder':
        """if (condition) { then } else { otherwise }"""
        loc = loc or L(1)
        cond_id = Ident("cond", self._next())
        self.current.add_instr(Assign(loc=loc, id=cond_id, exp=condition))
        branch = self.current

        join = self._new_block(NodeKind.JOIN)
        for is_true, body in ((True, then), (False, otherwise)):
            block = self._new_block()
            self.proc.connect(branch.id, block.id)
            block.add_instr(Prune(loc=loc, condition=ExpVar(cond_id, loc=loc),
                                  is_true_branch=is_true,
                                  kind=PruneKind.IF_TRUE if is_true else PruneKind.IF_FALSE))
            self.current = block
            self.emit(*body)
            self.proc.connect(self.current.id, join.id)

        self.current = join
        return self

    def while_(self, condition: Exp, body: List[Instr],
               loc: Optional[Location] = None) -> 'ProcBuilder':
        """while (condition) { body }"""
        loc = loc or L(1)
        head = self._new_block(NodeKind.LOOP_HEAD)
        self.proc.connect(self.current.id, head.id)
        cond_id = Ident("cond", self._next())
        head.add_instr(Assign(loc=loc, id=cond_id, exp=condition))

        loop = self._new_block()
        self.proc.connect(head.id, loop.id)
        loop.add_instr(Prune(loc=loc, condition=ExpVar(cond_id, loc=loc),
                             is_true_branch=True, kind=PruneKind.LOOP_ENTER))
        self.current = loop
        self.emit(*body)
        self.proc.connect(self.current.id, head.id)

        after = self._new_block()
        self.proc.connect(head.id, after.id)
        after.add_instr(Prune(loc=loc, condition=ExpVar(cond_id, loc=loc),
                              is_true_branch=False, kind=PruneKind.LOOP_EXIT))
        self.current = after
        return self

    def done(self) -> Procedure:
        self.proc.connect(self.current.id, self.proc.exit_node)
        return self.proc

    def _new_block(self, kind: NodeKind = NodeKind.NORMAL):
        node = self.proc.new_node(kind)
        self.proc.add_node(node)
        return node

    def _next(self) -> int:
        self._counter += 1
        return self._counter


def expr_stmt(exp: Exp, loc: Optional[Location] = None) -> Assign:
    """An expression statement whose value is discarded"""
    return Assign(loc=loc or exp.loc or L(1), id=Ident("expr"), exp=exp)


def null(loc: Optional[Location] = None) -> ExpConst:
    return ExpConst.null(loc)
