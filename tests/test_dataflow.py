"""
Tests for the per-function fixpoint and its reporting pass.
"""

import time

import pytest

from nullinfer.analysis.arena import Arena, Truth
from nullinfer.analysis.dataflow import DataflowAnalysis
from nullinfer.errors import AnalysisBudgetExceeded
from nullinfer.sil.instructions import Assign, Return
from nullinfer.sil.procedure import Program
from nullinfer.sil.types import ExpUnOp, PVar, Typ, binop, deref, var

from sil_helpers import L, NONNULL_PTR, ProcBuilder, declare, expr_stmt, null, ptr


def analyze(program, proc, **options):
    return DataflowAnalysis(program, proc, Arena(), **options).run()


def violation_sites(result):
    return [str(v.loc) for v in result.violations]


@pytest.fixture
def program():
    return Program()


class TestBranches:
    """Guards established by if statements"""

    def test_dereference_inside_null_check(self, program):
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.if_(var("p"), [expr_stmt(deref(var("p"), L(2, 5)))])
        result = analyze(program, body.done())
        assert violation_sites(result) == []

    def test_dereference_after_null_check(self, program):
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.if_(var("p"), [])
        body.emit(expr_stmt(deref(var("p"), L(3, 3))))
        result = analyze(program, body.done())
        assert violation_sites(result) == ["input.cc:3:3"]

    def test_early_return(self, program):
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.if_(ExpUnOp("!", var("p")), [Return(loc=L(2, 5))])
        body.emit(expr_stmt(deref(var("p"), L(3, 3))))
        result = analyze(program, body.done())
        assert violation_sites(result) == []

    def test_else_branch_of_equality_with_zero(self, program):
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.if_(binop("==", var("p"), null()),
                 [expr_stmt(deref(var("p"), L(2, 5)))],
                 [expr_stmt(deref(var("p"), L(3, 5)))])
        result = analyze(program, body.done())
        assert violation_sites(result) == ["input.cc:2:5"]

    def test_reassignment_after_check(self, program):
        body = ProcBuilder(program, "target", [("p", ptr()), ("q", ptr())])
        body.if_(var("p"), [
            Assign(loc=L(2, 5), id=PVar("p"), exp=var("q")),
            expr_stmt(deref(var("p"), L(3, 5))),
        ])
        result = analyze(program, body.done())
        assert [v.value for v in result.violations] == ["param:q"]

    def test_equal_pointers_share_null_checks(self, program):
        """if (p != q) return; if (!q) return; *p;"""
        body = ProcBuilder(program, "target", [("p", ptr()), ("q", ptr())])
        body.if_(binop("!=", var("p"), var("q")), [Return(loc=L(2, 5))])
        body.if_(ExpUnOp("!", var("q")), [Return(loc=L(3, 5))])
        body.emit(expr_stmt(deref(var("p"), L(4, 3))))
        result = analyze(program, body.done())
        assert violation_sites(result) == []

    def test_equality_alone_is_not_a_check(self, program):
        body = ProcBuilder(program, "target", [("p", ptr()), ("q", ptr())])
        body.if_(binop("!=", var("p"), var("q")), [Return(loc=L(2, 5))])
        body.emit(expr_stmt(deref(var("p"), L(4, 3))))
        result = analyze(program, body.done())
        assert violation_sites(result) == ["input.cc:4:3"]

    def test_annotated_redeclaration_seeds_entry_state(self, program):
        declare(program, "target", [("p", ptr(NONNULL_PTR))])
        body = ProcBuilder(program, "target", [("p", ptr())], line=2)
        body.emit(expr_stmt(deref(var("p"), L(2, 24))))
        result = analyze(program, body.done())
        assert violation_sites(result) == []


class TestLoops:
    """Fixpoint convergence"""

    def _walk(self, program):
        body = ProcBuilder(program, "walk", [("p", ptr()), ("q", ptr())])
        body.while_(var("p"), [
            expr_stmt(deref(var("p"), L(3, 5))),
            Assign(loc=L(4, 5), id=PVar("p"), exp=var("q")),
        ])
        body.emit(expr_stmt(deref(var("p"), L(6, 3))))
        return body.done()

    def test_loop_converges(self, program):
        result = analyze(program, self._walk(program))
        assert violation_sites(result) == ["input.cc:6:3"]
        assert result.visits > len(result.outputs)

    def test_loop_body_is_reported_once(self, program):
        body = ProcBuilder(program, "spin", [("c", Typ.bool_type()), ("p", ptr())])
        body.while_(var("c"), [expr_stmt(deref(var("p"), L(3, 5)))])
        result = analyze(program, body.done())
        assert violation_sites(result) == ["input.cc:3:5"]

    def test_outputs_are_recorded(self, program):
        proc = self._walk(program)
        result = analyze(program, proc)
        assert result.output_of(proc.exit_node) is not None
        assert result.proc_name == "walk"

    def test_visit_limit(self, program):
        with pytest.raises(AnalysisBudgetExceeded) as exc:
            analyze(program, self._walk(program), max_node_visits=1)
        assert "visited more than 1 times" in str(exc.value)

    def test_deadline(self, program):
        with pytest.raises(AnalysisBudgetExceeded) as exc:
            analyze(program, self._walk(program), deadline=time.monotonic() - 1)
        assert "time budget" in str(exc.value)


class TestVerbose:
    """Verbose output goes to stdout with a tag"""

    def test_verbose_messages(self, program, capsys):
        body = ProcBuilder(program, "target", [("p", ptr())])
        body.emit(expr_stmt(deref(var("p"), L(1, 24))))
        analyze(program, body.done(), verbose=True)
        captured = capsys.readouterr()
        assert "[Dataflow] target: converged" in captured.out
        assert "1 unchecked dereference" in captured.out


class TestSymbolicParameters:
    """Parameter nullability bound to atoms instead of annotations"""

    def _copy_and_return(self, program):
        """int *target(int *p) { int *q = p; return q; }"""
        body = ProcBuilder(program, "target", [("p", ptr())], ret_type=ptr())
        body.proc.locals["q"] = ptr()
        body.emit(Assign(loc=L(2, 5), id=PVar("q"), exp=var("p")),
                  Return(loc=L(3, 5), value=var("q")))
        return body.done()

    def test_return_follows_parameter_atoms(self, program):
        arena = Arena()
        analysis = DataflowAnalysis(program, self._copy_and_return(program), arena)
        sym = analysis.assign_nullability_variable("p")
        result = analysis.run()

        env = result.exit_env()
        ret = result.return_value()
        assert ret == "param:p"
        for formula in (sym.nonnull, sym.nullable,
                        env.from_nullable_of(ret), env.not_null_of(ret)):
            assert env.evaluate(formula) == Truth.UNKNOWN
        assert env.evaluate(arena.implies(sym.nonnull, env.not_null_of(ret))) == Truth.TRUE
        assert env.evaluate(arena.iff(sym.nullable, env.from_nullable_of(ret))) == Truth.TRUE
        assert env.evaluate(arena.and_(sym.nonnull, sym.nullable)) == Truth.FALSE

    def test_symbolic_parameter_overrides_annotation(self, program):
        declare(program, "target", [("p", ptr(NONNULL_PTR))], ret_type=ptr())
        arena = Arena()
        analysis = DataflowAnalysis(program, self._copy_and_return(program), arena)
        sym = analysis.assign_nullability_variable("p")
        env = analysis.run().exit_env()
        assert env.evaluate(env.not_null_of("param:p")) == Truth.UNKNOWN
        assert env.evaluate(arena.implies(sym.nonnull, env.not_null_of("param:p"))) == Truth.TRUE

    def test_only_pointer_parameters(self, program):
        body = ProcBuilder(program, "target", [("n", Typ.int_type())])
        analysis = DataflowAnalysis(program, body.done(), Arena())
        with pytest.raises(ValueError):
            analysis.assign_nullability_variable("n")
        with pytest.raises(ValueError):
            analysis.assign_nullability_variable("missing")
