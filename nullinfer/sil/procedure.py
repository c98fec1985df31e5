"""
Procedure and Control Flow Graph definitions for the nullability SIL.

This module defines:
- ProcSpec: Nullability facts about a library function
- Node: A basic block in the CFG
- Procedure: One declaration of a function/method, with its CFG if it has a body
- Program: Every declaration of a translation unit, redeclarations included

Slots number the nullability-relevant positions of a procedure:
slot 0 is the return value, slots 1..N are the parameters in order.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple
from enum import Enum, auto

from .types import PVar, Typ, Location, NullabilityKind
from .instructions import Instr


# =============================================================================
# Library Specification
# =============================================================================

@dataclass
class ProcSpec:
    """
    Nullability facts about a function the program does not declare.

    Used for C/C++ library functions (malloc, assert, operator new, ...).
    """

    # Is the returned pointer always non-null?
    returns_nonnull: bool = False

    # Can this function return null?
    may_return_null: bool = False

    # Does the call abort unless its condition argument holds?
    aborts_if_null: bool = False

    # Which argument positions hold that condition (0-indexed)
    condition_args: List[int] = field(default_factory=lambda: [0])

    # Human-readable description
    description: str = ""


# =============================================================================
# CFG Node
# =============================================================================

class NodeKind(Enum):
    """Kind of CFG node"""
    ENTRY = auto()        # Function entry point
    EXIT = auto()         # Function exit point
    NORMAL = auto()       # Normal basic block
    BRANCH = auto()       # Branch point (if/switch)
    JOIN = auto()         # Join point (merge of branches)
    LOOP_HEAD = auto()    # Loop header


@dataclass
class Node:
    """
    A node in the Control Flow Graph.

    Each node is a basic block: a sequence of instructions with a single
    entry and a single exit. Control flow is represented by
    successor/predecessor edges.
    """

    # Unique identifier within procedure
    id: int

    # Instructions in this basic block
    instrs: List[Instr] = field(default_factory=list)

    # Control flow edges
    succs: List[int] = field(default_factory=list)    # Successor node IDs
    preds: List[int] = field(default_factory=list)    # Predecessor node IDs

    # Node metadata
    kind: NodeKind = NodeKind.NORMAL
    label: Optional[str] = None  # Optional label for debugging

    def __str__(self) -> str:
        lines = [f"Node {self.id} ({self.kind.name}):"]
        for instr in self.instrs:
            lines.append(f"  {instr}")
        if self.succs:
            lines.append(f"  -> {self.succs}")
        return "\n".join(lines)

    def add_instr(self, instr: Instr) -> None:
        """Add an instruction to this node"""
        self.instrs.append(instr)

    def add_succ(self, node_id: int) -> None:
        """Add a successor edge"""
        if node_id not in self.succs:
            self.succs.append(node_id)

    def add_pred(self, node_id: int) -> None:
        """Add a predecessor edge"""
        if node_id not in self.preds:
            self.preds.append(node_id)


# =============================================================================
# Procedure
# =============================================================================

@dataclass
class Procedure:
    """
    One declaration of a procedure (function/method) in SIL.

    Contains:
    - Signature (name, symbol identity, parameters, return type)
    - Local variables
    - Control flow graph (empty unless ``has_body``)
    """

    # Procedure name (fully qualified)
    name: str

    # Symbol identity shared by all redeclarations of the same entity
    usr: str = ""

    # Parameters with types
    params: List[Tuple[PVar, Typ]] = field(default_factory=list)

    # Return type (None for void)
    ret_type: Optional[Typ] = None

    # Local variables
    locals: Dict[str, Typ] = field(default_factory=dict)

    # Control flow graph
    nodes: Dict[int, Node] = field(default_factory=dict)
    entry_node: int = 0
    exit_node: int = -1

    # Is this a definition (has a body) or a bare declaration?
    has_body: bool = False

    # Source location
    loc: Optional[Location] = None

    # Additional metadata
    is_method: bool = False           # Is this a method (has self/this)?
    class_name: Optional[str] = None  # Class name if method

    # Internal state for building CFG
    _next_node_id: int = field(default=0, repr=False)

    def __post_init__(self):
        if not self.usr:
            self.usr = f"c:@F@{self.name}"

    def __str__(self) -> str:
        params_str = ", ".join(f"{t} {p.name}" for p, t in self.params)
        ret_str = str(self.ret_type) if self.ret_type else "void"
        return f"{ret_str} {self.name}({params_str})"

    # =========================================================================
    # Slots
    # =========================================================================

    @property
    def arity(self) -> int:
        """Number of parameters; valid slots are 0..arity"""
        return len(self.params)

    def slot_type(self, slot: int) -> Optional[Typ]:
        """Type at a slot (0 = return, i = i-th parameter)"""
        if slot == 0:
            return self.ret_type
        if 1 <= slot <= len(self.params):
            return self.params[slot - 1][1]
        return None

    def pointer_slots(self) -> List[int]:
        """Slots whose type is a pointer"""
        slots = []
        for slot in range(self.arity + 1):
            typ = self.slot_type(slot)
            if typ is not None and typ.is_pointer():
                slots.append(slot)
        return slots

    def is_eligible(self) -> bool:
        """Does this symbol have any nullability-relevant slot?"""
        return bool(self.pointer_slots())

    def param_slot(self, name: str) -> Optional[int]:
        """Slot of the parameter with this name"""
        for i, (param, _) in enumerate(self.params):
            if param.name == name:
                return i + 1
        return None

    # =========================================================================
    # CFG Construction
    # =========================================================================

    def new_node(self, kind: NodeKind = NodeKind.NORMAL) -> Node:
        """Create a new CFG node"""
        node = Node(id=self._next_node_id, kind=kind)
        self._next_node_id += 1
        return node

    def add_node(self, node: Node) -> None:
        """Add a node to the CFG"""
        self.nodes[node.id] = node

    def connect(self, from_id: int, to_id: int) -> None:
        """Connect two nodes with an edge"""
        if from_id in self.nodes and to_id in self.nodes:
            self.nodes[from_id].add_succ(to_id)
            self.nodes[to_id].add_pred(from_id)

    def reverse_postorder(self) -> List[Node]:
        """Get reachable nodes in reverse postorder (useful for dataflow)"""
        visited = set()
        postorder = []

        # Iterative DFS; deep CFGs would overflow the recursion limit
        if self.entry_node not in self.nodes:
            return []
        stack = [(self.entry_node, iter(self.nodes[self.entry_node].succs))]
        visited.add(self.entry_node)
        while stack:
            node_id, succs = stack[-1]
            for succ_id in succs:
                if succ_id not in visited and succ_id in self.nodes:
                    visited.add(succ_id)
                    stack.append((succ_id, iter(self.nodes[succ_id].succs)))
                    break
            else:
                stack.pop()
                postorder.append(self.nodes[node_id])

        return list(reversed(postorder))

    def var_type(self, name: str) -> Optional[Typ]:
        """Declared type of a parameter or local variable"""
        for param, typ in self.params:
            if param.name == name:
                return typ
        return self.locals.get(name)


# =============================================================================
# Program
# =============================================================================

@dataclass
class Program:
    """
    A complete SIL program.

    Contains:
    - Every procedure declaration in source order (redeclarations included)
    - Library specifications (for functions the program does not declare)
    """

    # All declarations, in source order
    declarations: List[Procedure] = field(default_factory=list)

    # Library specifications for external functions
    library_specs: Dict[str, ProcSpec] = field(default_factory=dict)

    # Source file information
    source_files: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [f"Program with {len(self.declarations)} declarations:"]
        for proc in self.declarations:
            kind = "definition" if proc.has_body else "declaration"
            lines.append(f"  - {proc} [{kind}]")
        return "\n".join(lines)

    # =========================================================================
    # Procedure management
    # =========================================================================

    def add_procedure(self, proc: Procedure) -> None:
        """Add a declaration or definition to the program"""
        self.declarations.append(proc)

    def definitions(self) -> List[Procedure]:
        """Declarations that have a body"""
        return [proc for proc in self.declarations if proc.has_body]

    def redeclarations(self, usr: str) -> List[Procedure]:
        """All declarations of one symbol"""
        return [proc for proc in self.declarations if proc.usr == usr]

    def lookup_callee(self, name: str, nargs: int) -> Optional[Procedure]:
        """
        Resolve a call by name and argument count.

        Overloads are told apart by arity only; the first matching
        declaration wins. An unqualified name also matches a qualified
        declaration (``f`` finds ``ns::f``, ``m`` finds ``Class::m``).
        """
        candidates = [proc for proc in self.declarations if proc.name == name]
        if not candidates:
            suffix = "::" + name.split("::")[-1]
            candidates = [proc for proc in self.declarations if proc.name.endswith(suffix)]
        for proc in candidates:
            if proc.arity == nargs:
                return proc
        return candidates[0] if len(candidates) == 1 else None

    # =========================================================================
    # Nullability lookup
    # =========================================================================

    def annotation(self, usr: str, slot: int) -> NullabilityKind:
        """
        Explicit annotation of a slot, folded across redeclarations.

        Returns UNKNOWN when no redeclaration annotates the slot or when
        redeclarations disagree.
        """
        kinds = set()
        for proc in self.redeclarations(usr):
            typ = proc.slot_type(slot)
            if typ is not None and typ.is_annotated():
                kinds.add(typ.nullability)
        if len(kinds) == 1:
            return kinds.pop()
        return NullabilityKind.UNKNOWN

    def get_spec(self, func_name: str) -> Optional[ProcSpec]:
        """
        Get library specification for a function.

        Looks up in order:
        1. Exact name
        2. Unqualified name for ``ns::func`` and ``std::func`` spellings
        """
        spec = self.library_specs.get(func_name)
        if spec:
            return spec
        if '::' in func_name:
            return self.library_specs.get(func_name.split('::')[-1])
        return None

