"""
Tests for the nullability environment and its join.
"""

import pytest

from nullinfer.analysis.arena import Arena
from nullinfer.analysis.lattice import Environment, PointerState, join


@pytest.fixture
def arena():
    return Arena()


class TestEnvironment:
    """Bindings, properties and classification"""

    def test_not_null_atom_is_created_once(self, arena):
        env = Environment(arena)
        first = env.not_null_of("param:p")
        assert first is env.not_null_of("param:p")
        assert first is arena.atom("nn:param:p")

    def test_truth_of_pointer_is_its_not_null_property(self, arena):
        env = Environment(arena)
        nn = env.not_null_of("param:p")
        assert env.truth_of("param:p") is nn

    def test_truth_of_plain_value_is_its_own_atom(self, arena):
        env = Environment(arena)
        assert env.truth_of("param:flag") is arena.atom("b:param:flag")

    def test_fork_is_independent(self, arena):
        env = Environment(arena)
        env.bind("p", "param:p")
        copy = env.fork()
        copy.bind("p", "call:1.0.0")
        copy.mark_nullable("call:1.0.0")
        copy.assume(arena.atom("x"))
        assert env.lookup("p") == "param:p"
        assert not env.is_nullable_origin("call:1.0.0")
        assert env.flow_condition.is_true()

    def test_classify(self, arena):
        env = Environment(arena)
        env.assume(env.not_null_of("a"))
        env.assume(arena.not_(env.not_null_of("b")))
        env.not_null_of("c")
        env.mark_nullable("c")
        env.not_null_of("d")

        assert env.classify("a") == PointerState.NONNULL
        assert env.classify("b") == PointerState.NULL
        assert env.classify("c") == PointerState.NULLABLE
        assert env.classify("d") == PointerState.UNKNOWN

    def test_proved_value_is_nonnull_even_if_nullable_origin(self, arena):
        env = Environment(arena)
        env.mark_nullable("c")
        env.assume(env.not_null_of("c"))
        assert env.classify("c") == PointerState.NONNULL

    def test_equivalence_ignores_flow_condition(self, arena):
        env = Environment(arena)
        env.bind("p", "param:p")
        env.not_null_of("param:p")
        other = env.fork()
        other.assume(arena.atom("x"))
        assert env.equivalent_to(other)

        other.bind("p", "join:3:p")
        assert not env.equivalent_to(other)


class TestJoin:
    """Merging the environments of incoming edges"""

    def test_single_edge_is_a_copy(self, arena):
        env = Environment(arena)
        env.bind("p", "param:p")
        joined = join([env], 4)
        assert joined is not env
        assert joined.lookup("p") == "param:p"

    def test_identical_bindings_are_kept(self, arena):
        left = Environment(arena)
        left.bind("p", "param:p")
        right = left.fork()
        joined = join([left, right], 4)
        assert joined.lookup("p") == "param:p"

    def test_differing_bindings_get_a_join_value(self, arena):
        left = Environment(arena)
        left.bind("p", "param:p")
        left.not_null_of("param:p")
        right = left.fork()
        right.bind("p", "null")
        right.set_not_null("null", arena.false())

        joined = join([left, right], 4)
        assert joined.lookup("p") == "join:4:p"
        assert joined.has_not_null("join:4:p")
        assert joined.classify("join:4:p") == PointerState.UNKNOWN

    def test_join_value_is_deterministic(self, arena):
        left = Environment(arena)
        left.bind("p", "a")
        right = Environment(arena)
        right.bind("p", "b")
        assert join([left, right], 7).lookup("p") == join([right, left], 7).lookup("p")

    def test_flow_conditions_are_disjoined(self, arena):
        x = arena.atom("x")
        left = Environment(arena)
        left.assume(x)
        right = Environment(arena)
        right.assume(arena.not_(x))
        assert join([left, right], 2).flow_condition.is_true()

    def test_facts_common_to_all_edges_survive(self, arena):
        y = arena.atom("y")
        left = Environment(arena)
        left.assume(arena.and_(arena.atom("x"), y))
        right = Environment(arena)
        right.assume(arena.and_(arena.not_(arena.atom("x")), y))
        assert join([left, right], 2).proves(y)

    def test_variable_bound_on_one_edge_only(self, arena):
        left = Environment(arena)
        left.bind("q", "call:1.0.0")
        right = Environment(arena)
        joined = join([left, right], 9)
        assert joined.lookup("q") == "join:9:q"
