"""
Core type definitions for the nullability SIL.

This module defines the fundamental types used throughout the SIL:
- Identifiers and program variables
- Source locations for evidence provenance
- Type representations with nullability annotations
- Expression AST nodes
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union, Any
from enum import Enum, auto


# =============================================================================
# Nullability
# =============================================================================

class NullabilityKind(Enum):
    """
    Nullability of a pointer position.

    UNKNOWN is both the default (no annotation, no verdict) and the
    outcome of irreconcilable conflict.
    """
    NONNULL = "NONNULL"
    NULLABLE = "NULLABLE"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


# =============================================================================
# Identifiers and Variables
# =============================================================================

@dataclass(frozen=True)
class Ident:
    """
    Identifier - a temporary variable introduced by the frontend.

    These are SSA-style temporaries used to hold intermediate values.
    The stamp provides uniqueness.

    Example: $tmp_0, $call_result_1
    """
    name: str
    stamp: int = 0

    def __str__(self) -> str:
        if self.stamp:
            return f"${self.name}_{self.stamp}"
        return f"${self.name}"

    def __repr__(self) -> str:
        return f"Ident({self.name!r}, {self.stamp})"


@dataclass(frozen=True)
class PVar:
    """
    Program variable - a variable from the source code.

    Example: p, result, cond
    """
    name: str

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"PVar({self.name!r})"


@dataclass(frozen=True)
class Location:
    """
    Source location for evidence provenance.

    Lines and columns are 1-based; the string form "file:line:col" is
    what evidence records carry.
    """
    file: str
    line: int
    column: int = 0
    end_line: Optional[int] = None
    end_column: Optional[int] = None

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"

    def __repr__(self) -> str:
        return f"Location({self.file!r}, {self.line}, {self.column})"

    @classmethod
    def unknown(cls) -> 'Location':
        """Create an unknown location"""
        return cls("<unknown>", 0)


# =============================================================================
# Types
# =============================================================================

class TypeKind(Enum):
    """Basic type kinds"""
    INT = auto()
    FLOAT = auto()
    BOOL = auto()
    CHAR = auto()
    POINTER = auto()
    ARRAY = auto()
    STRUCT = auto()
    CLASS = auto()
    FUNCTION = auto()
    VOID = auto()
    UNKNOWN = auto()


@dataclass
class Typ:
    """
    Type representation.

    Pointers carry the nullability annotation written on them, if any.
    """
    kind: TypeKind
    pointee: Optional['Typ'] = None           # For pointers
    element: Optional['Typ'] = None           # For arrays
    name: Optional[str] = None                # Named types (structs, classes)
    nullability: NullabilityKind = NullabilityKind.UNKNOWN

    def __str__(self) -> str:
        if self.kind == TypeKind.POINTER:
            inner = f"{self.pointee}*" if self.pointee else "*"
            if self.nullability != NullabilityKind.UNKNOWN:
                return f"{self.nullability.value.capitalize()}<{inner}>"
            return inner
        if self.name:
            return self.name
        if self.kind == TypeKind.ARRAY and self.element:
            return f"{self.element}[]"
        return self.kind.name.lower()

    def is_pointer(self) -> bool:
        return self.kind == TypeKind.POINTER

    def is_annotated(self) -> bool:
        return self.is_pointer() and self.nullability != NullabilityKind.UNKNOWN

    @classmethod
    def int_type(cls) -> 'Typ':
        return cls(TypeKind.INT)

    @classmethod
    def bool_type(cls) -> 'Typ':
        return cls(TypeKind.BOOL)

    @classmethod
    def void_type(cls) -> 'Typ':
        return cls(TypeKind.VOID)

    @classmethod
    def unknown_type(cls) -> 'Typ':
        return cls(TypeKind.UNKNOWN)

    @classmethod
    def pointer_to(cls, pointee: 'Typ',
                   nullability: NullabilityKind = NullabilityKind.UNKNOWN) -> 'Typ':
        return cls(TypeKind.POINTER, pointee=pointee, nullability=nullability)

    @classmethod
    def array_of(cls, element: 'Typ') -> 'Typ':
        return cls(TypeKind.ARRAY, element=element)

    @classmethod
    def struct_type(cls, name: str) -> 'Typ':
        return cls(TypeKind.STRUCT, name=name)


# =============================================================================
# Expressions
# =============================================================================

@dataclass
class Exp:
    """Base class for expressions"""

    def __str__(self) -> str:
        return "<exp>"


@dataclass
class ExpVar(Exp):
    """
    Variable reference.

    Can be either an Ident (temporary) or PVar (program variable).
    """
    var: Union[Ident, PVar]
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        return str(self.var)

    def __repr__(self) -> str:
        return f"ExpVar({self.var!r})"


@dataclass
class ExpConst(Exp):
    """
    Constant value.

    Includes integers, floats, strings, booleans, and the null pointer.
    """
    value: Union[int, float, str, bool, None]
    typ: Typ = field(default_factory=Typ.unknown_type)
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        if self.value is None:
            return "nullptr"
        if isinstance(self.value, str):
            escaped = self.value.replace('\\', '\\\\').replace('"', '\\"')
            if len(escaped) > 50:
                escaped = escaped[:47] + "..."
            return f'"{escaped}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)

    def __repr__(self) -> str:
        return f"ExpConst({self.value!r})"

    def is_null(self) -> bool:
        return self.value is None

    @classmethod
    def null(cls, loc: Optional[Location] = None) -> 'ExpConst':
        return cls(None, Typ.pointer_to(Typ.void_type()), loc=loc)

    @classmethod
    def integer(cls, n: int) -> 'ExpConst':
        return cls(n, Typ.int_type())

    @classmethod
    def string(cls, s: str) -> 'ExpConst':
        return cls(s, Typ.pointer_to(Typ(TypeKind.CHAR)))

    @classmethod
    def boolean(cls, b: bool) -> 'ExpConst':
        return cls(b, Typ.bool_type())


@dataclass
class ExpBinOp(Exp):
    """
    Binary operation.

    Supports arithmetic, comparison, and logical operators.
    """
    op: str  # "+", "-", "*", "/", "%", "==", "!=", "<", ">", "<=", ">=", "&&", "||", "&", "|", "^"
    left: Exp
    right: Exp
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"

    def __repr__(self) -> str:
        return f"ExpBinOp({self.op!r}, {self.left!r}, {self.right!r})"


@dataclass
class ExpUnOp(Exp):
    """
    Unary operation.

    Includes negation, logical not, dereference, and address-of.
    """
    op: str  # "-" (negate), "!" (not), "*" (deref), "&" (addr-of), "~" (bitwise not)
    operand: Exp
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        if self.op in ("*", "&"):
            return f"{self.op}{self.operand}"
        return f"{self.op}({self.operand})"

    def __repr__(self) -> str:
        return f"ExpUnOp({self.op!r}, {self.operand!r})"


@dataclass
class ExpFieldAccess(Exp):
    """
    Field access.

    Handles both struct.field and ptr->field access patterns.
    """
    base: Exp
    field_name: str
    is_arrow: bool = False  # True for ptr->field, False for struct.field
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        op = "->" if self.is_arrow else "."
        return f"{self.base}{op}{self.field_name}"

    def __repr__(self) -> str:
        return f"ExpFieldAccess({self.base!r}, {self.field_name!r}, {self.is_arrow})"


@dataclass
class ExpIndex(Exp):
    """
    Array/pointer indexing.

    Represents base[index] access.
    """
    base: Exp
    index: Exp
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"

    def __repr__(self) -> str:
        return f"ExpIndex({self.base!r}, {self.index!r})"


@dataclass
class ExpCast(Exp):
    """
    Type cast expression.
    """
    exp: Exp
    typ: Typ
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"({self.typ}){self.exp}"

    def __repr__(self) -> str:
        return f"ExpCast({self.exp!r}, {self.typ!r})"


@dataclass
class ExpCall(Exp):
    """
    Function call expression (for calls that return values used in expressions).

    Different from the Call instruction - this is for nested calls like f(g(x)).
    """
    func: Exp
    args: List[Exp]
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.func}({args_str})"

    def __repr__(self) -> str:
        return f"ExpCall({self.func!r}, {self.args!r})"

    def func_name(self) -> str:
        if isinstance(self.func, ExpConst) and isinstance(self.func.value, str):
            return self.func.value
        return str(self.func)


@dataclass
class ExpTernary(Exp):
    """
    Ternary conditional expression: cond ? true_exp : false_exp
    """
    condition: Exp
    true_exp: Exp
    false_exp: Exp
    loc: Optional[Location] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"({self.condition} ? {self.true_exp} : {self.false_exp})"

    def __repr__(self) -> str:
        return f"ExpTernary({self.condition!r}, {self.true_exp!r}, {self.false_exp!r})"


# =============================================================================
# Helper functions
# =============================================================================

def var(name: str, loc: Optional[Location] = None) -> ExpVar:
    """Create a variable expression from a name"""
    return ExpVar(PVar(name), loc=loc)


def const(value: Any) -> ExpConst:
    """Create a constant expression"""
    if value is None:
        return ExpConst.null()
    if isinstance(value, bool):
        return ExpConst.boolean(value)
    if isinstance(value, int):
        return ExpConst.integer(value)
    if isinstance(value, str):
        return ExpConst.string(value)
    return ExpConst(value)


def binop(op: str, left: Exp, right: Exp, loc: Optional[Location] = None) -> ExpBinOp:
    """Create a binary operation expression"""
    return ExpBinOp(op, left, right, loc=loc)


def deref(operand: Exp, loc: Optional[Location] = None) -> ExpUnOp:
    """Create a dereference expression: *operand"""
    return ExpUnOp("*", operand, loc=loc)


def addr_of(operand: Exp, loc: Optional[Location] = None) -> ExpUnOp:
    """Create an address-of expression: &operand"""
    return ExpUnOp("&", operand, loc=loc)


def call_exp(func: str, args: List[Exp], loc: Optional[Location] = None) -> ExpCall:
    """Create a call expression by function name"""
    return ExpCall(ExpConst.string(func), list(args), loc=loc)
