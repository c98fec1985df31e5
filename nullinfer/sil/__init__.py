"""
Nullability SIL: the small intermediate language the inference runs on.

A language-agnostic IR that captures:
1. Declarations with their pointer slots and nullability annotations
2. Function bodies as control flow graphs of basic blocks
3. Pointer operations (dereference, address-of, comparison, calls)
4. Branch conditions (for path sensitivity)

Architecture:
    Source Code -> Frontend (tree-sitter) -> SIL -> Dataflow -> Evidence -> Merge

Example usage:
    from nullinfer.sil.frontends import CppFrontend

    frontend = CppFrontend()
    program = frontend.translate(source_code, "example.cc")

    for proc in program.definitions():
        print(proc, proc.pointer_slots())
"""

# Core types
from nullinfer.sil.types import (
    NullabilityKind,
    Ident,
    PVar,
    Location,
    Typ,
    TypeKind,
    # Expressions
    Exp,
    ExpVar,
    ExpConst,
    ExpBinOp,
    ExpUnOp,
    ExpFieldAccess,
    ExpIndex,
    ExpCast,
    ExpCall,
    ExpTernary,
)

# Instructions
from nullinfer.sil.instructions import (
    Instr,
    Store,
    Prune,
    Call,
    Assign,
    Return,
    Metadata,
    Unsupported,
    PruneKind,
)

# Procedure and program
from nullinfer.sil.procedure import (
    Node,
    NodeKind,
    Procedure,
    ProcSpec,
    Program,
)

__all__ = [
    # Types
    "NullabilityKind", "Ident", "PVar", "Location", "Typ", "TypeKind",
    "Exp", "ExpVar", "ExpConst", "ExpBinOp", "ExpUnOp",
    "ExpFieldAccess", "ExpIndex", "ExpCast", "ExpCall", "ExpTernary",
    # Instructions
    "Instr", "Store", "Prune", "Call", "Assign", "Return",
    "Metadata", "Unsupported", "PruneKind",
    # Procedure
    "Node", "NodeKind", "Procedure", "ProcSpec", "Program",
]
