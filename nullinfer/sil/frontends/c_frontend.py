"""
C/C++ to nullability SIL Frontend.

This module translates C and C++ source code to SIL using tree-sitter
for parsing. It handles:
- Function definitions and bodiless declarations (redeclarations are kept)
- Nullability annotations (Nonnull<T*>, Nullable<T*>, _Nonnull, _Nullable)
- Variable declarations and assignments
- Function calls
- Control flow (if/else, while, do/while, for, switch, break, continue)
- Pointers, member access and subscripts
- Namespaces, classes and methods (C++)

Branch conditions are evaluated once, in the node that branches, into a
temporary; each branch target then starts with a Prune on that temporary.
"""

import re
from typing import Dict, List, Optional, Tuple, Any

try:
    import tree_sitter_c as tsc
    from tree_sitter import Language, Parser, Node as TSNode
    TREE_SITTER_C_AVAILABLE = True
except ImportError:
    TREE_SITTER_C_AVAILABLE = False
    TSNode = Any

try:
    import tree_sitter_cpp as tscpp
    TREE_SITTER_CPP_AVAILABLE = True
except ImportError:
    TREE_SITTER_CPP_AVAILABLE = False

from nullinfer.sil.types import (
    Ident, PVar, Typ, TypeKind, Location, NullabilityKind,
    Exp, ExpVar, ExpConst, ExpBinOp, ExpUnOp,
    ExpFieldAccess, ExpIndex, ExpCast, ExpCall, ExpTernary,
)
from nullinfer.sil.instructions import (
    Instr, Store, Prune, Call, Assign, Return, Unsupported, PruneKind
)
from nullinfer.sil.procedure import Procedure, Node, NodeKind, ProcSpec, Program
from nullinfer.sil.specs.c_specs import C_SPECS, CPP_SPECS


# Nonnull<int *>, absl::Nullable<T*>
_TEMPLATE_ANNOTATION = re.compile(r"(?:\b\w+\s*::\s*)*\b(Nonnull|Nullable)\s*<")
# int * _Nonnull p
_QUALIFIER_ANNOTATION = re.compile(r"\b_(Nonnull|Nullable)\b")
# The grammars do not know the qualifiers; the parser sees a same-length const
_QUALIFIER_BYTES = re.compile(rb"\b_(?:Nonnull|Nullable)\b")
_TOP_LEVEL_CV = re.compile(r"\b(?:const|volatile)\b")

_ANNOTATION_KINDS = {
    "Nonnull": NullabilityKind.NONNULL,
    "Nullable": NullabilityKind.NULLABLE,
}

_POINTER_DECLARATORS = ("pointer_declarator", "abstract_pointer_declarator")
_ARRAY_DECLARATORS = ("array_declarator", "abstract_array_declarator")
_WRAPPER_DECLARATORS = (
    "reference_declarator", "abstract_reference_declarator",
    "parenthesized_declarator", "abstract_parenthesized_declarator",
)

_CAST_FUNCTIONS = ("static_cast", "const_cast", "reinterpret_cast")

# Statements a function body cannot contain and still be analysed
_UNSUPPORTED_STATEMENTS = {
    "goto_statement": "goto",
    "try_statement": "try",
    "seh_try_statement": "try",
    "throw_statement": "throw",
    "asm_statement": "asm",
    "co_return_statement": "co_return",
}


def parse_nullability(text: str) -> NullabilityKind:
    """Nullability annotation spelled in a type's source text"""
    match = _TEMPLATE_ANNOTATION.search(text) or _QUALIFIER_ANNOTATION.search(text)
    if match:
        return _ANNOTATION_KINDS[match.group(1)]
    return NullabilityKind.UNKNOWN


def strip_nullability(text: str) -> str:
    """Canonical spelling of a type with its nullability annotations removed"""
    text = _QUALIFIER_ANNOTATION.sub("", text)
    while True:
        match = _TEMPLATE_ANNOTATION.search(text)
        if not match:
            break
        # Drop the wrapper and its matching closing bracket
        depth = 1
        end = match.end()
        while end < len(text) and depth:
            if text[end] == "<":
                depth += 1
            elif text[end] == ">":
                depth -= 1
            end += 1
        text = text[:match.start()] + text[match.end():end - 1] + text[end:]
    return re.sub(r"\s+", "", text)


def _mask_qualifiers(source: bytes) -> bytes:
    """Source with _Nonnull/_Nullable replaced by const, byte offsets unchanged"""
    return _QUALIFIER_BYTES.sub(lambda m: b"const".ljust(len(m.group(0))), source)


class CFrontend:
    """
    Translates C source code to nullability SIL.

    Usage:
        frontend = CFrontend()
        program = frontend.translate(source_code, "example.c")
    """

    def __init__(self, specs: Dict[str, ProcSpec] = None):
        """
        Initialize the C frontend.

        Args:
            specs: Library specifications (defaults to C_SPECS)
        """
        if not TREE_SITTER_C_AVAILABLE:
            raise ImportError(
                "tree-sitter-c is required. "
                "Install with: pip install tree-sitter-c"
            )

        self.parser = Parser(Language(tsc.language()))
        self.specs = specs or C_SPECS
        self._reset_state()

    def _reset_state(self) -> None:
        self._filename = "<unknown>"
        self._source = b""
        self._current_proc: Optional[Procedure] = None
        self._current_node: Optional[Node] = None
        self._ident_counter = 0
        # (break target, continue target) for enclosing loops/switches
        self._jump_targets: List[Tuple[int, Optional[int]]] = []

    def translate(self, source_code: str, filename: str = "<unknown>") -> Program:
        """Translate C source code to SIL Program."""
        self._reset_state()
        self._filename = filename
        self._source = bytes(source_code, "utf8")

        # Node text is always read back from the unmasked source
        tree = self.parser.parse(_mask_qualifiers(self._source))
        program = Program(library_specs=self.specs.copy())
        program.source_files.append(filename)

        self._translate_translation_unit(tree.root_node, program)
        return program

    def _translate_translation_unit(self, root: TSNode, program: Program) -> None:
        """Translate C translation unit (file)"""
        self._translate_node_children(root, program)

    def _translate_node_children(self, node: TSNode, program: Program) -> None:
        """Recursively translate children, collecting functions and prototypes."""
        for child in node.children:
            self._translate_top_level(child, program)

    def _translate_top_level(self, child: TSNode, program: Program) -> None:
        if child.type == "function_definition":
            proc = self._translate_function(child)
            if proc:
                program.add_procedure(proc)
        elif child.type == "declaration":
            for proc in self._translate_prototypes(child):
                program.add_procedure(proc)
        elif child.type in ("preproc_ifdef", "preproc_if", "preproc_else",
                            "preproc_elif", "declaration_list",
                            "linkage_specification"):
            body = child.child_by_field_name("body")
            self._translate_node_children(body if body else child, program)

    # =========================================================================
    # Declarations
    # =========================================================================

    def _translate_prototypes(self, node: TSNode) -> List[Procedure]:
        """Translate bodiless function declarations: int *f(int *p);"""
        procs = []
        type_node = node.child_by_field_name("type")
        for declarator in node.children_by_field_name("declarator"):
            func_decl = self._find_function_declarator(declarator)
            if func_decl is None:
                continue
            proc = self._new_procedure(node, type_node, declarator, func_decl)
            if proc:
                procs.append(proc)
        return procs

    def _translate_function(self, node: TSNode) -> Optional[Procedure]:
        """Translate function definition"""
        declarator = node.child_by_field_name("declarator")
        if not declarator:
            return None

        func_decl = self._find_function_declarator(declarator)
        if func_decl is None:
            return None

        proc = self._new_procedure(node, node.child_by_field_name("type"), declarator, func_decl)
        if proc is None:
            return None

        body = node.child_by_field_name("body")
        if body is None:
            return proc

        proc.has_body = True
        self._current_proc = proc
        self._jump_targets = []
        try:
            self._translate_body(proc, body)
        except Exception as e:
            # The body becomes a single Unsupported node, which skips only this function
            self._stub_body(proc, f"untranslatable body ({type(e).__name__})")
        finally:
            self._current_proc = None
            self._current_node = None
        return proc

    def _translate_body(self, proc: Procedure, body: TSNode) -> None:
        """Build the CFG of a function body between fresh entry and exit nodes"""
        entry = proc.new_node(NodeKind.ENTRY)
        proc.add_node(entry)
        proc.entry_node = entry.id

        exit_node = proc.new_node(NodeKind.EXIT)
        proc.add_node(exit_node)
        proc.exit_node = exit_node.id

        self._current_node = entry
        self._translate_compound_statement(body)

        if self._current_node:
            proc.connect(self._current_node.id, exit_node.id)

    def _stub_body(self, proc: Procedure, construct: str) -> None:
        proc.nodes = {}
        proc._next_node_id = 0
        entry = proc.new_node(NodeKind.ENTRY)
        proc.add_node(entry)
        proc.entry_node = entry.id
        node = proc.new_node()
        node.add_instr(Unsupported(loc=proc.loc, construct=construct))
        proc.add_node(node)
        exit_node = proc.new_node(NodeKind.EXIT)
        proc.add_node(exit_node)
        proc.exit_node = exit_node.id
        proc.connect(entry.id, node.id)
        proc.connect(node.id, exit_node.id)

    def _new_procedure(self, node: TSNode, type_node: Optional[TSNode],
                       declarator: TSNode, func_decl: TSNode) -> Optional[Procedure]:
        """Build the signature of a function declaration or definition"""
        func_name = self._get_function_name(func_decl)
        if not func_name:
            return None

        params = self._translate_parameters(func_decl)
        ret_type = self._translate_return_type(type_node, declarator, func_decl)

        proc = Procedure(
            name=self._qualify(func_name),
            params=params,
            ret_type=ret_type,
            loc=self._get_location(node),
        )
        proc.usr = self._symbol_identity(proc, func_decl)
        return proc

    def _qualify(self, name: str) -> str:
        """Qualified procedure name (C has no scopes)"""
        return name

    def _symbol_identity(self, proc: Procedure, func_decl: TSNode) -> str:
        """Symbol identity shared by every redeclaration of a C function"""
        return f"c:@F@{proc.name}"

    def _find_function_declarator(self, declarator: TSNode) -> Optional[TSNode]:
        """Find the function_declarator below pointer/reference wrappers"""
        node = declarator
        while node is not None:
            if node.type == "function_declarator":
                return node
            if node.type in _POINTER_DECLARATORS or node.type in _WRAPPER_DECLARATORS:
                node = self._inner_declarator(node)
            else:
                return None
        return None

    def _get_function_name(self, declarator: TSNode) -> Optional[str]:
        """Extract function name from a function_declarator"""
        inner = declarator.child_by_field_name("declarator")
        if inner is None:
            return None
        if inner.type in ("identifier", "field_identifier", "qualified_identifier",
                          "destructor_name", "operator_name", "template_function"):
            return re.sub(r"\s+", "", self._get_text(inner))
        if inner.type in _WRAPPER_DECLARATORS:
            return self._get_function_name(inner)
        return None

    def _translate_parameters(self, declarator: TSNode) -> List[Tuple[PVar, Typ]]:
        """Translate function parameters; unnamed ones get positional names"""
        params = []
        params_node = declarator.child_by_field_name("parameters")
        if not params_node:
            return params

        for child in params_node.named_children:
            if child.type not in ("parameter_declaration", "optional_parameter_declaration"):
                continue

            type_node = child.child_by_field_name("type")
            decl_node = child.child_by_field_name("declarator")

            # f(void) has no parameters
            if decl_node is None and self._get_text(type_node).strip() == "void":
                continue

            param_type = self._declared_type(type_node, decl_node)
            param_name = self._extract_identifier(decl_node) if decl_node else None
            if not param_name:
                param_name = f"$arg{len(params) + 1}"

            params.append((PVar(param_name), param_type))

        return params

    def _translate_return_type(self, type_node: Optional[TSNode], declarator: TSNode,
                               func_decl: TSNode) -> Optional[Typ]:
        """Return type: the type specifier plus pointer declarators around the name"""
        depth = 0
        quals = []
        node = declarator
        while node is not None and node != func_decl:
            if node.type in _POINTER_DECLARATORS:
                depth += 1
                quals.append(self._declarator_prefix(node))
            node = self._inner_declarator(node)

        type_text = self._get_text(type_node)
        typ = self._type_from_text(type_text, depth, False, " ".join(quals))
        if typ.kind == TypeKind.VOID:
            return None
        return typ

    def _declared_type(self, type_node: Optional[TSNode], declarator: Optional[TSNode]) -> Typ:
        """Type of a declared name: specifier plus pointer/array declarators"""
        depth = 0
        is_array = False
        quals = []
        node = declarator
        while node is not None:
            if node.type in _POINTER_DECLARATORS:
                depth += 1
                quals.append(self._declarator_prefix(node))
            elif node.type in _ARRAY_DECLARATORS and depth == 0:
                is_array = True
            elif node.type not in _WRAPPER_DECLARATORS and node.type != "init_declarator":
                break
            node = self._inner_declarator(node)

        return self._type_from_text(self._get_text(type_node), depth, is_array, " ".join(quals))

    def _type_from_text(self, type_text: str, depth: int, is_array: bool, quals: str) -> Typ:
        """Build a Typ from a specifier's text and its declarator shape"""
        base = self._translate_type(type_text)
        if is_array:
            return Typ.array_of(base)
        if depth:
            typ = base
            for _ in range(depth - 1):
                typ = Typ.pointer_to(typ)
            return Typ.pointer_to(typ, parse_nullability(quals))
        # Nonnull<int *> spells the pointer inside the template argument
        if _TEMPLATE_ANNOTATION.search(type_text):
            inner = strip_nullability(type_text).rstrip("*")
            return Typ.pointer_to(self._translate_type(inner), parse_nullability(type_text))
        return base

    def _translate_type(self, text: str) -> Typ:
        """Translate a type specifier"""
        text = text.strip()
        words = set(re.findall(r"\w+", text))
        if "bool" in words or "_Bool" in words:
            return Typ.bool_type()
        if words & {"int", "long", "short", "unsigned", "signed", "size_t", "ssize_t"}:
            return Typ.int_type()
        if "char" in words:
            return Typ(TypeKind.CHAR)
        if words & {"float", "double"}:
            return Typ(TypeKind.FLOAT)
        if text == "void":
            return Typ.void_type()
        if text.startswith(("struct ", "class ", "union ")):
            return Typ.struct_type(text.split()[-1])
        if text:
            return Typ(TypeKind.UNKNOWN, name=text)
        return Typ.unknown_type()

    def _inner_declarator(self, node: TSNode) -> Optional[TSNode]:
        """The declarator nested in a pointer/array/reference declarator"""
        inner = node.child_by_field_name("declarator")
        if inner is None and node.type in _WRAPPER_DECLARATORS:
            named = node.named_children
            return named[-1] if named else None
        return inner

    def _declarator_prefix(self, node: TSNode) -> str:
        """Text of a pointer declarator before its nested declarator"""
        inner = node.child_by_field_name("declarator")
        end = inner.start_byte if inner else node.end_byte
        return self._source[node.start_byte:end].decode("utf8", errors="replace")

    def _extract_identifier(self, node: TSNode) -> Optional[str]:
        """Extract identifier from declarator node"""
        if node is None:
            return None
        if node.type in ("identifier", "field_identifier"):
            return self._get_text(node)
        if node.type in _POINTER_DECLARATORS or node.type in _ARRAY_DECLARATORS \
                or node.type in _WRAPPER_DECLARATORS or node.type == "init_declarator":
            return self._extract_identifier(self._inner_declarator(node))
        return None

    # =========================================================================
    # Statements
    # =========================================================================

    def _translate_compound_statement(self, node: TSNode) -> None:
        """Translate compound statement (block)"""
        for child in node.named_children:
            self._translate_statement(child)

    def _translate_statement(self, node: TSNode) -> None:
        """Translate a statement"""
        if node.type == "expression_statement":
            self._translate_expression_statement(node)
        elif node.type == "declaration":
            self._translate_declaration(node)
        elif node.type == "return_statement":
            self._translate_return(node)
        elif node.type == "if_statement":
            self._translate_if(node)
        elif node.type == "while_statement":
            self._translate_while(node)
        elif node.type == "for_statement":
            self._translate_for(node)
        elif node.type == "for_range_loop":
            self._translate_for_range(node)
        elif node.type == "do_statement":
            self._translate_do_while(node)
        elif node.type == "switch_statement":
            self._translate_switch(node)
        elif node.type == "compound_statement":
            self._translate_compound_statement(node)
        elif node.type == "break_statement":
            self._translate_jump(0)
        elif node.type == "continue_statement":
            self._translate_jump(1)
        elif node.type == "labeled_statement":
            for child in node.named_children:
                if child.type != "statement_identifier":
                    self._translate_statement(child)
        elif node.type in _UNSUPPORTED_STATEMENTS:
            self._add_instr(Unsupported(
                loc=self._get_location(node),
                construct=_UNSUPPORTED_STATEMENTS[node.type]
            ))

    def _translate_expression_statement(self, node: TSNode) -> None:
        """Translate expression statement"""
        for child in node.named_children:
            self._translate_effect(child)

    def _translate_effect(self, node: TSNode) -> None:
        """Translate an expression evaluated only for its effects"""
        loc = self._get_location(node)
        if node.type == "call_expression" and self._is_direct_call(node):
            self._add_instr(self._translate_call(node, None))
        elif node.type == "assignment_expression":
            self._translate_assignment(node)
        elif node.type == "update_expression":
            self._translate_update(node)
        elif node.type == "comma_expression":
            self._translate_effect(node.child_by_field_name("left"))
            self._translate_effect(node.child_by_field_name("right"))
        elif node.type == "gnu_asm_expression":
            self._add_instr(Unsupported(loc=loc, construct="asm"))
        elif node.type == "throw_expression":
            self._add_instr(Unsupported(loc=loc, construct="throw"))
        else:
            exp = self._translate_expression(node)
            self._add_instr(Assign(loc=loc, id=self._new_ident("expr"), exp=exp))

    def _translate_declaration(self, node: TSNode) -> None:
        """Translate local variable declaration"""
        type_node = node.child_by_field_name("type")
        for declarator in node.children_by_field_name("declarator"):
            var_name = self._extract_identifier(declarator)
            if not var_name or self._current_proc is None:
                continue

            self._current_proc.locals[var_name] = self._declared_type(type_node, declarator)

            if declarator.type != "init_declarator":
                continue

            value = declarator.child_by_field_name("value")
            if value is None:
                continue
            if value.type in ("initializer_list", "argument_list"):
                # int *p{q}; int *p(q);
                elements = value.named_children
                if not elements:
                    continue
                value = elements[0]

            loc = self._get_location(declarator)
            self._assign_to_var(var_name, value, loc)

    def _assign_to_var(self, var_name: str, value: TSNode, loc: Location) -> None:
        """Translate: var = value"""
        if value.type == "call_expression" and self._is_direct_call(value):
            ret_id = self._new_ident(var_name)
            self._add_instr(self._translate_call(value, ret_id))
            self._add_instr(Assign(loc=loc, id=PVar(var_name), exp=ExpVar(ret_id, loc=loc)))
        else:
            exp = self._translate_expression(value)
            self._add_instr(Assign(loc=loc, id=PVar(var_name), exp=exp))

    def _translate_assignment(self, node: TSNode) -> Exp:
        """
        Translate assignment expression; returns the assigned lvalue.

        Writes through a pointer (*p = v, p->f = v, p[i] = v) become Store
        instructions on the pointer.
        """
        left = self._unwrap_parens(node.child_by_field_name("left"))
        right = node.child_by_field_name("right")
        loc = self._get_location(node)

        op_node = node.child_by_field_name("operator")
        op = self._get_text(op_node) if op_node else "="

        if op == "=" and left.type == "identifier":
            self._assign_to_var(self._get_text(left), right, loc)
            return ExpVar(PVar(self._get_text(left)), loc=loc)

        value = self._translate_expression(right)
        if op != "=":
            # Compound assignment: x += v
            value = ExpBinOp(op[:-1], self._translate_expression(left), value, loc=loc)

        self._store_to(left, value, loc)
        return self._translate_expression(left)

    def _store_to(self, left: TSNode, value: Exp, loc: Location) -> None:
        """Write a value to an lvalue"""
        if left.type == "identifier":
            self._add_instr(Assign(loc=loc, id=PVar(self._get_text(left)), exp=value))
        elif left.type == "pointer_expression" and self._operator(left) == "*":
            ptr_exp = self._translate_expression(left.child_by_field_name("argument"))
            self._add_instr(Store(loc=self._get_location(left), addr=ptr_exp,
                                  value=value, typ=Typ.unknown_type()))
        elif left.type == "field_expression" and self._operator(left) == "->":
            obj_exp = self._translate_expression(left.child_by_field_name("argument"))
            self._add_instr(Store(loc=self._get_location(left), addr=obj_exp,
                                  value=value, typ=Typ.unknown_type()))
        elif left.type == "subscript_expression" and not self._is_local_array(left):
            arr_exp = self._translate_expression(left.child_by_field_name("argument"))
            self._add_instr(Store(loc=self._get_location(left), addr=arr_exp,
                                  value=value, typ=Typ.unknown_type()))
        else:
            # s.f = v, a[i] = v on a local array: no pointer is written through
            self._add_instr(Assign(loc=loc, id=self._new_ident("lhs"),
                                   exp=self._translate_expression(left)))
            self._add_instr(Assign(loc=loc, id=self._new_ident("rhs"), exp=value))

    def _is_local_array(self, subscript: TSNode) -> bool:
        base = subscript.child_by_field_name("argument")
        if base is None or base.type != "identifier" or self._current_proc is None:
            return False
        typ = self._current_proc.var_type(self._get_text(base))
        return typ is not None and typ.kind == TypeKind.ARRAY

    def _translate_update(self, node: TSNode) -> None:
        """Translate update expression: i++ or --*p"""
        loc = self._get_location(node)
        arg = node.child_by_field_name("argument")
        if arg is None:
            return
        op = "-" if "--" in self._get_text(node) else "+"
        value = ExpBinOp(op, self._translate_expression(arg), ExpConst.integer(1), loc=loc)
        self._store_to(self._unwrap_parens(arg), value, loc)

    def _translate_return(self, node: TSNode) -> None:
        """Translate return statement; it ends the current block"""
        loc = self._get_location(node)
        value_exp = None

        for child in node.named_children:
            value_exp = self._translate_expression(child)
            break

        self._add_instr(Return(loc=loc, value=value_exp))
        if self._current_node and self._current_proc:
            self._current_proc.connect(self._current_node.id, self._current_proc.exit_node)
        self._current_node = None

    def _translate_jump(self, which: int) -> None:
        """Translate break (which=0) or continue (which=1)"""
        proc = self._current_proc
        if not proc:
            return
        for targets in reversed(self._jump_targets):
            target = targets[which]
            if target is not None:
                if self._current_node:
                    proc.connect(self._current_node.id, target)
                break
        self._current_node = None

    def _translate_condition(self, node: Optional[TSNode]) -> Optional[Exp]:
        """
        Evaluate a branch condition into a temporary in the current node.

        Returns the temporary, or None when there is no condition.
        """
        if node is None:
            return None
        if node.type == "condition_clause":
            init = node.child_by_field_name("initializer")
            if init is not None:
                self._translate_statement(init)
            value = node.child_by_field_name("value")
            if value is None:
                return None
            if value.type == "declaration":
                # if (int *p = f())
                self._translate_declaration(value)
                var_name = None
                for declarator in value.children_by_field_name("declarator"):
                    var_name = self._extract_identifier(declarator)
                return ExpVar(PVar(var_name)) if var_name else None
            node = value

        node = self._unwrap_parens(node)
        loc = self._get_location(node)
        cond_id = self._new_ident("cond")
        self._add_instr(Assign(loc=loc, id=cond_id, exp=self._translate_expression(node)))
        return ExpVar(cond_id, loc=loc)

    def _branch_node(self, condition: Optional[Exp], is_true: bool, kind: PruneKind,
                     loc: Location, node_kind: NodeKind = NodeKind.NORMAL) -> Node:
        """Create a node that starts with a Prune on the condition"""
        proc = self._current_proc
        node = proc.new_node(node_kind)
        proc.add_node(node)
        if condition is not None:
            node.add_instr(Prune(loc=loc, condition=condition,
                                 is_true_branch=is_true, kind=kind))
        return node

    def _translate_if(self, node: TSNode) -> None:
        """Translate if statement"""
        loc = self._get_location(node)
        proc = self._current_proc
        if not proc:
            return

        condition_exp = self._translate_condition(node.child_by_field_name("condition"))
        before_node = self._current_node

        true_node = self._branch_node(condition_exp, True, PruneKind.IF_TRUE, loc)
        false_node = self._branch_node(condition_exp, False, PruneKind.IF_FALSE, loc)

        join_node = proc.new_node(NodeKind.JOIN)
        proc.add_node(join_node)

        if before_node:
            proc.connect(before_node.id, true_node.id)
            proc.connect(before_node.id, false_node.id)

        consequence = node.child_by_field_name("consequence")
        self._current_node = true_node
        if consequence:
            self._translate_statement(consequence)
        if self._current_node:
            proc.connect(self._current_node.id, join_node.id)

        alternative = node.child_by_field_name("alternative")
        self._current_node = false_node
        if alternative:
            if alternative.type == "else_clause":
                for child in alternative.named_children:
                    self._translate_statement(child)
            else:
                self._translate_statement(alternative)
        if self._current_node:
            proc.connect(self._current_node.id, join_node.id)

        self._current_node = join_node

    def _translate_while(self, node: TSNode) -> None:
        """Translate while loop"""
        proc = self._current_proc
        if not proc:
            return

        loc = self._get_location(node)

        loop_head = proc.new_node(NodeKind.LOOP_HEAD)
        proc.add_node(loop_head)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)
        self._current_node = loop_head

        condition_exp = self._translate_condition(node.child_by_field_name("condition"))
        head_end = self._current_node

        body_node = self._branch_node(condition_exp, True, PruneKind.LOOP_ENTER, loc)
        after_node = self._branch_node(condition_exp, False, PruneKind.LOOP_EXIT, loc)
        proc.connect(head_end.id, body_node.id)
        if condition_exp is not None:
            proc.connect(head_end.id, after_node.id)

        self._jump_targets.append((after_node.id, loop_head.id))
        body = node.child_by_field_name("body")
        self._current_node = body_node
        if body:
            self._translate_statement(body)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)
        self._jump_targets.pop()

        self._current_node = after_node

    def _translate_for(self, node: TSNode) -> None:
        """Translate for loop"""
        proc = self._current_proc
        if not proc:
            return

        loc = self._get_location(node)

        # Initialize
        init = node.child_by_field_name("initializer")
        if init:
            if init.type == "declaration":
                self._translate_declaration(init)
            else:
                self._translate_effect(init)

        loop_head = proc.new_node(NodeKind.LOOP_HEAD)
        proc.add_node(loop_head)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)
        self._current_node = loop_head

        condition_exp = self._translate_condition(node.child_by_field_name("condition"))
        head_end = self._current_node

        body_node = self._branch_node(condition_exp, True, PruneKind.FOR_ENTER, loc)
        after_node = self._branch_node(condition_exp, False, PruneKind.FOR_EXIT, loc)
        proc.connect(head_end.id, body_node.id)
        if condition_exp is not None:
            proc.connect(head_end.id, after_node.id)

        update_node = proc.new_node(NodeKind.NORMAL)
        proc.add_node(update_node)

        self._jump_targets.append((after_node.id, update_node.id))
        body = node.child_by_field_name("body")
        self._current_node = body_node
        if body:
            self._translate_statement(body)
        if self._current_node:
            proc.connect(self._current_node.id, update_node.id)
        self._jump_targets.pop()

        # Update
        self._current_node = update_node
        update = node.child_by_field_name("update")
        if update:
            self._translate_effect(update)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)

        self._current_node = after_node

    def _translate_for_range(self, node: TSNode) -> None:
        """Translate range-based for loop: for (T *x : xs)"""
        proc = self._current_proc
        if not proc:
            return

        loc = self._get_location(node)
        range_id = self._new_ident("range")
        right = node.child_by_field_name("right")
        if right is not None:
            self._add_instr(Assign(loc=loc, id=range_id, exp=self._translate_expression(right)))

        loop_head = proc.new_node(NodeKind.LOOP_HEAD)
        proc.add_node(loop_head)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)

        body_node = proc.new_node(NodeKind.NORMAL)
        proc.add_node(body_node)
        after_node = proc.new_node(NodeKind.NORMAL)
        proc.add_node(after_node)
        proc.connect(loop_head.id, body_node.id)
        proc.connect(loop_head.id, after_node.id)

        self._current_node = body_node
        declarator = node.child_by_field_name("declarator")
        var_name = self._extract_identifier(declarator)
        if var_name:
            proc.locals[var_name] = self._declared_type(node.child_by_field_name("type"), declarator)
            element = ExpCall(ExpConst.string("operator*"), [ExpVar(range_id, loc=loc)], loc=loc)
            self._add_instr(Assign(loc=loc, id=PVar(var_name), exp=element))

        self._jump_targets.append((after_node.id, loop_head.id))
        body = node.child_by_field_name("body")
        if body:
            self._translate_statement(body)
        if self._current_node:
            proc.connect(self._current_node.id, loop_head.id)
        self._jump_targets.pop()

        self._current_node = after_node

    def _translate_do_while(self, node: TSNode) -> None:
        """Translate do-while loop"""
        proc = self._current_proc
        if not proc:
            return

        loc = self._get_location(node)

        body_node = proc.new_node(NodeKind.LOOP_HEAD)
        proc.add_node(body_node)
        cond_node = proc.new_node(NodeKind.NORMAL)
        proc.add_node(cond_node)

        if self._current_node:
            proc.connect(self._current_node.id, body_node.id)

        after_node = proc.new_node(NodeKind.NORMAL)
        proc.add_node(after_node)

        self._jump_targets.append((after_node.id, cond_node.id))
        body = node.child_by_field_name("body")
        self._current_node = body_node
        if body:
            self._translate_statement(body)
        if self._current_node:
            proc.connect(self._current_node.id, cond_node.id)
        self._jump_targets.pop()

        self._current_node = cond_node
        condition_exp = self._translate_condition(node.child_by_field_name("condition"))
        cond_end = self._current_node

        again_node = self._branch_node(condition_exp, True, PruneKind.LOOP_ENTER, loc)
        leave_node = self._branch_node(condition_exp, False, PruneKind.LOOP_EXIT, loc)
        proc.connect(cond_end.id, again_node.id)
        proc.connect(again_node.id, body_node.id)
        if condition_exp is not None:
            proc.connect(cond_end.id, leave_node.id)
        proc.connect(leave_node.id, after_node.id)

        self._current_node = after_node

    def _translate_switch(self, node: TSNode) -> None:
        """Translate switch statement; cases fall through to the next one"""
        proc = self._current_proc
        if not proc:
            return

        condition = node.child_by_field_name("condition")
        self._translate_condition(condition)
        switch_node = self._current_node

        after_node = proc.new_node(NodeKind.JOIN)
        proc.add_node(after_node)

        self._jump_targets.append((after_node.id, None))
        has_default = False
        body = node.child_by_field_name("body")
        cases = [c for c in body.named_children if c.type == "case_statement"] if body else []
        for case in cases:
            value = case.child_by_field_name("value")
            if value is None:
                has_default = True

            case_node = proc.new_node(NodeKind.NORMAL)
            proc.add_node(case_node)
            if switch_node:
                proc.connect(switch_node.id, case_node.id)
            if self._current_node and self._current_node is not switch_node:
                proc.connect(self._current_node.id, case_node.id)

            self._current_node = case_node
            for stmt in case.named_children:
                if value is not None and stmt == value:
                    continue
                self._translate_statement(stmt)

        if self._current_node and self._current_node is not switch_node:
            proc.connect(self._current_node.id, after_node.id)
        if switch_node and not has_default:
            proc.connect(switch_node.id, after_node.id)
        self._jump_targets.pop()

        self._current_node = after_node

    # =========================================================================
    # Expressions
    # =========================================================================

    def _translate_call(self, call_node: TSNode, ret_id: Optional[Ident]) -> Call:
        """Translate a direct call as a Call instruction"""
        loc = self._get_location(call_node)
        args = [(self._translate_expression(a), Typ.unknown_type())
                for a in self._get_call_args(call_node)]
        return Call(
            loc=loc,
            ret=(ret_id, Typ.unknown_type()) if ret_id else None,
            func=ExpConst.string(self._get_call_name(call_node)),
            args=args
        )

    def _translate_expression(self, node: TSNode) -> Exp:
        """Translate expression"""
        if node is None:
            return ExpConst.null()

        loc = self._get_location(node)

        if node.type in ("identifier", "qualified_identifier"):
            text = self._get_text(node)
            if text in ("NULL", "nullptr"):
                return ExpConst.null(loc)
            return ExpVar(PVar(text), loc=loc)

        elif node.type in ("null", "nullptr"):
            return ExpConst.null(loc)

        elif node.type == "this":
            return ExpVar(PVar("this"), loc=loc)

        elif node.type == "number_literal":
            text = re.sub(r"[uUlL]+$", "", self._get_text(node).replace("'", ""))
            try:
                if text.lower().startswith("0x"):
                    value = int(text, 16)
                elif "." in text or "e" in text.lower():
                    value = int(float(text.rstrip("fF")))
                else:
                    value = int(text, 8 if text.startswith("0") and len(text) > 1 else 10)
            except ValueError:
                value = 1
            return ExpConst(value, Typ.int_type(), loc=loc)

        elif node.type in ("string_literal", "concatenated_string", "raw_string_literal"):
            text = self._get_text(node)
            # Remove quotes
            if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
                text = text[1:-1]
            return ExpConst(text, Typ.pointer_to(Typ(TypeKind.CHAR)), loc=loc)

        elif node.type == "char_literal":
            return ExpConst(self._get_text(node), Typ(TypeKind.CHAR), loc=loc)

        elif node.type in ("true", "false"):
            return ExpConst(node.type == "true", Typ.bool_type(), loc=loc)

        elif node.type == "binary_expression":
            left_exp = self._translate_expression(node.child_by_field_name("left"))
            right_exp = self._translate_expression(node.child_by_field_name("right"))
            op = self._operator(node) or "+"
            return ExpBinOp(op, left_exp, right_exp, loc=loc)

        elif node.type == "unary_expression":
            op = self._operator(node) or "-"
            arg_exp = self._translate_expression(node.child_by_field_name("argument"))
            return ExpUnOp(op, arg_exp, loc=loc)

        elif node.type == "pointer_expression":
            op = self._operator(node)
            arg_exp = self._translate_expression(node.child_by_field_name("argument"))
            if op in ("*", "&"):
                return ExpUnOp(op, arg_exp, loc=loc)
            return arg_exp

        elif node.type == "subscript_expression":
            arr = node.child_by_field_name("argument")
            idx = node.child_by_field_name("index")
            if idx is None:
                indices = node.child_by_field_name("indices")
                named = indices.named_children if indices else []
                idx = named[0] if named else None
            idx_exp = self._translate_expression(idx) if idx else ExpConst.integer(0)
            return ExpIndex(self._translate_expression(arr), idx_exp, loc=loc)

        elif node.type == "field_expression":
            obj = node.child_by_field_name("argument")
            field = node.child_by_field_name("field")
            return ExpFieldAccess(
                self._translate_expression(obj),
                self._get_text(field) if field else "",
                is_arrow=self._operator(node) == "->",
                loc=loc
            )

        elif node.type == "call_expression":
            return self._translate_call_expression(node)

        elif node.type == "new_expression":
            args = []
            arguments = node.child_by_field_name("arguments")
            if arguments is not None:
                args = [self._translate_expression(a) for a in arguments.named_children]
            return ExpCall(ExpConst.string("operator new"), args, loc=loc)

        elif node.type == "delete_expression":
            args = [self._translate_expression(a) for a in node.named_children]
            return ExpCall(ExpConst.string("operator delete"), args, loc=loc)

        elif node.type in ("parenthesized_expression", "condition_clause"):
            for child in node.named_children:
                return self._translate_expression(child)

        elif node.type == "conditional_expression":
            return ExpTernary(
                self._translate_expression(node.child_by_field_name("condition")),
                self._translate_expression(node.child_by_field_name("consequence")),
                self._translate_expression(node.child_by_field_name("alternative")),
                loc=loc
            )

        elif node.type == "cast_expression":
            type_node = node.child_by_field_name("type")
            value = node.child_by_field_name("value")
            typ = self._cast_type(type_node)
            return ExpCast(self._translate_expression(value), typ, loc=loc)

        elif node.type == "sizeof_expression":
            return ExpCall(ExpConst.string("sizeof"), [], loc=loc)

        elif node.type == "assignment_expression":
            return self._translate_assignment(node)

        elif node.type == "update_expression":
            self._translate_update(node)
            arg = node.child_by_field_name("argument")
            return self._translate_expression(arg)

        elif node.type == "comma_expression":
            self._translate_effect(node.child_by_field_name("left"))
            return self._translate_expression(node.child_by_field_name("right"))

        # Default: an opaque value
        return ExpCall(ExpConst.string(node.type), [], loc=loc)

    def _translate_call_expression(self, node: TSNode) -> Exp:
        """Translate a call used as a value"""
        loc = self._get_location(node)
        func = node.child_by_field_name("function")
        args = [self._translate_expression(a) for a in self._get_call_args(node)]

        if func is not None and func.type == "template_function":
            name_node = func.child_by_field_name("name")
            if self._get_text(name_node) in _CAST_FUNCTIONS and args:
                # static_cast<T*>(p)
                return ExpCast(args[0], Typ.unknown_type(), loc=loc)

        if self._is_direct_call(node):
            return ExpCall(ExpConst.string(self._get_call_name(node)), args, loc=loc)

        # obj->method(args), (*fp)(args)
        return ExpCall(self._translate_expression(func), args, loc=loc)

    def _cast_type(self, type_node: Optional[TSNode]) -> Typ:
        if type_node is None:
            return Typ.unknown_type()
        type_spec = type_node.child_by_field_name("type")
        declarator = type_node.child_by_field_name("declarator")
        if type_spec is None:
            return self._translate_type(self._get_text(type_node))
        return self._declared_type(type_spec, declarator)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_text(self, node: TSNode) -> str:
        if node is None:
            return ""
        return self._source[node.start_byte:node.end_byte].decode("utf8", errors="replace")

    def _get_location(self, node) -> Location:
        if hasattr(node, 'start_point'):
            return Location(
                file=self._filename,
                line=node.start_point[0] + 1,
                column=node.start_point[1] + 1,
                end_line=node.end_point[0] + 1,
                end_column=node.end_point[1] + 1
            )
        return Location(file=self._filename, line=1, column=1)

    def _operator(self, node: TSNode) -> str:
        op = node.child_by_field_name("operator")
        return self._get_text(op) if op else ""

    def _unwrap_parens(self, node: TSNode) -> TSNode:
        while node is not None and node.type == "parenthesized_expression" and node.named_children:
            node = node.named_children[0]
        return node

    def _is_direct_call(self, node: TSNode) -> bool:
        func = node.child_by_field_name("function")
        if func is None:
            return False
        if func.type == "template_function":
            return self._get_text(func.child_by_field_name("name")) not in _CAST_FUNCTIONS
        return func.type in ("identifier", "qualified_identifier")

    def _get_call_name(self, node: TSNode) -> str:
        func = node.child_by_field_name("function")
        if func is None:
            return ""
        if func.type == "template_function":
            func = func.child_by_field_name("name")
        return re.sub(r"\s+", "", self._get_text(func))

    def _get_call_args(self, node: TSNode) -> List[TSNode]:
        args_node = node.child_by_field_name("arguments")
        if args_node is None:
            return []
        return [child for child in args_node.named_children if child.type != "comment"]

    def _new_ident(self, prefix: str = "tmp") -> Ident:
        ident = Ident(prefix, self._ident_counter)
        self._ident_counter += 1
        return ident

    def _add_instr(self, instr: Instr) -> None:
        if self._current_node:
            self._current_node.add_instr(instr)


class CppFrontend(CFrontend):
    """
    Translates C++ source code to nullability SIL.

    Extends CFrontend with C++ specific features:
    - Classes and methods (in-class and out-of-line)
    - Namespaces
    - Templates (function templates are translated like plain functions)
    - Symbol identities that tell overloads apart by parameter types
    """

    def __init__(self, specs: Dict[str, ProcSpec] = None):
        """
        Initialize the C++ frontend.

        Args:
            specs: Library specifications (defaults to CPP_SPECS)
        """
        if not TREE_SITTER_CPP_AVAILABLE:
            raise ImportError(
                "tree-sitter-cpp is required. "
                "Install with: pip install tree-sitter-cpp"
            )

        self.parser = Parser(Language(tscpp.language()))
        self.specs = specs or CPP_SPECS
        self._reset_state()

    def _reset_state(self) -> None:
        super()._reset_state()
        # Enclosing namespaces and classes, outermost first
        self._scopes: List[str] = []
        self._class_names = set()

    def _translate_top_level(self, child: TSNode, program: Program) -> None:
        """Translate C++ declarations, descending into scopes"""
        if child.type in ("class_specifier", "struct_specifier"):
            self._translate_class(child, program)
        elif child.type == "namespace_definition":
            self._translate_namespace(child, program)
        elif child.type == "template_declaration":
            self._translate_node_children(child, program)
        elif child.type == "field_declaration":
            for proc in self._translate_prototypes(child):
                program.add_procedure(proc)
        else:
            if child.type == "declaration":
                # struct S { ... } s; declares a class too
                type_node = child.child_by_field_name("type")
                if type_node is not None and type_node.type in ("class_specifier", "struct_specifier"):
                    self._translate_class(type_node, program)
            super()._translate_top_level(child, program)

    def _translate_class(self, node: TSNode, program: Program) -> None:
        """Translate C++ class/struct"""
        body = node.child_by_field_name("body")
        if body is None:
            return
        name_node = node.child_by_field_name("name")
        class_name = self._get_text(name_node) if name_node else "(anonymous)"
        self._class_names.add(class_name)

        self._scopes.append(class_name)
        self._translate_node_children(body, program)
        self._scopes.pop()

    def _translate_namespace(self, node: TSNode, program: Program) -> None:
        """Translate namespace definition"""
        name_node = node.child_by_field_name("name")
        ns_name = self._get_text(name_node) if name_node else "(anonymous)"

        self._scopes.append(ns_name)
        body = node.child_by_field_name("body")
        if body:
            self._translate_node_children(body, program)
        self._scopes.pop()

    def _qualify(self, name: str) -> str:
        return "::".join(self._scopes + [name])

    def _new_procedure(self, node: TSNode, type_node: Optional[TSNode],
                       declarator: TSNode, func_decl: TSNode) -> Optional[Procedure]:
        proc = super()._new_procedure(node, type_node, declarator, func_decl)
        if proc and "::" in proc.name:
            scope = proc.name.rsplit("::", 1)[0].split("::")[-1]
            if scope in self._class_names:
                proc.is_method = True
                proc.class_name = scope
        if proc and proc.is_method:
            proc.locals["this"] = Typ.pointer_to(Typ.struct_type(proc.class_name),
                                                 NullabilityKind.NONNULL)
        return proc

    def _symbol_identity(self, proc: Procedure, func_decl: TSNode) -> str:
        """
        Symbol identity in the style of Clang USRs.

        Namespaces and classes become @N@ / @S@ components; the parameter
        types, with nullability annotations stripped, follow the name so
        that overloads differ while redeclarations agree.
        """
        parts = proc.name.split("::")
        scope = "".join(
            f"@S@{part}" if part in self._class_names else f"@N@{part}"
            for part in parts[:-1]
        )
        param_types = []
        params_node = func_decl.child_by_field_name("parameters")
        if params_node is not None:
            for child in params_node.named_children:
                if child.type not in ("parameter_declaration", "optional_parameter_declaration"):
                    if child.type == "variadic_parameter":
                        param_types.append("...")
                    continue
                type_node = child.child_by_field_name("type")
                decl = child.child_by_field_name("declarator")
                if self._get_text(type_node).strip() == "void" and decl is None:
                    continue
                param_types.append(strip_nullability(self._parameter_type_text(child)))
        suffix = "".join(f"{t}#" for t in param_types)
        return f"c:{scope}@F@{parts[-1]}#{suffix}"

    def _parameter_type_text(self, param: TSNode) -> str:
        """
        Spelling of a parameter's type without top-level cv-qualifiers.

        ``int* const p`` and ``int* p`` declare the same function, while
        ``const int* p`` does not.
        """
        type_node = param.child_by_field_name("type")
        decl = param.child_by_field_name("declarator")
        quals = [self._get_text(child) for child in param.named_children
                 if child.type == "type_qualifier"]
        shape = self._declarator_shape(decl) if decl is not None else ""
        if "*" in shape:
            head, star, tail = shape.rpartition("*")
            shape = head + star + _TOP_LEVEL_CV.sub("", tail)
        elif "&" not in shape and "[" not in shape:
            quals = [q for q in quals if not _TOP_LEVEL_CV.fullmatch(q.strip())]
        return " ".join(quals + [self._get_text(type_node)]) + shape

    def _declarator_shape(self, node: TSNode) -> str:
        """Pointer/reference/array punctuation of a declarator, without the name"""
        shape = ""
        while node is not None:
            if node.type in _POINTER_DECLARATORS:
                shape += self._declarator_prefix(node)
            elif node.type in ("reference_declarator", "abstract_reference_declarator"):
                shape += "&"
            elif node.type in _ARRAY_DECLARATORS:
                shape += "[]"
            elif node.type not in _WRAPPER_DECLARATORS:
                break
            node = self._inner_declarator(node)
        return shape
