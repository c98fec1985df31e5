"""
Tests for the evidence merge engine.
"""

import random

import pytest

from nullinfer.errors import MalformedEvidenceError
from nullinfer.inference.evidence import Evidence, EvidenceKind as K
from nullinfer.inference.merge import combine, location_key, merge_evidence, resolve
from nullinfer.sil.types import NullabilityKind as N


def ev(kind, slot=1, symbol="c:@F@target", location="input.cc:1:1"):
    return Evidence(symbol=symbol, slot=slot, kind=kind, location=location)


class TestCombine:
    """The slot verdict rules, in priority order"""

    @pytest.mark.parametrize("kinds,expected", [
        ([K.ANNOTATED_NONNULL], N.NONNULL),
        ([K.ANNOTATED_NULLABLE, K.UNCHECKED_DEREFERENCE], N.NULLABLE),
        ([K.ANNOTATED_NONNULL, K.NULLPTR_RETURNED], N.NONNULL),
        ([K.UNCHECKED_DEREFERENCE], N.NONNULL),
        ([K.ABORTS_IF_NULL, K.UNKNOWN_ARGUMENT], N.NONNULL),
        ([K.NULLABLE_ARGUMENT], N.NULLABLE),
        ([K.NULLPTR_RETURNED, K.NONNULL_RETURN], N.NULLABLE),
        ([K.NULLPTR_ASSIGNED, K.UNKNOWN_ARGUMENT], N.NULLABLE),
        ([K.NONNULL_ARGUMENT], N.NONNULL),
        ([K.NONNULL_ARGUMENT, K.NONNULL_ARGUMENT], N.NONNULL),
        ([K.NONNULL_RETURN, K.UNKNOWN_RETURN], N.UNKNOWN),
        ([K.UNKNOWN_ARGUMENT], N.UNKNOWN),
        ([], N.UNKNOWN),
    ])
    def test_rules(self, kinds, expected):
        assert combine(kinds) == expected

    def test_conflicting_annotations(self):
        assert resolve([K.ANNOTATED_NONNULL, K.ANNOTATED_NULLABLE]) == (N.UNKNOWN, True)

    def test_mandatory_against_nullable(self):
        assert resolve([K.UNCHECKED_DEREFERENCE, K.NULLABLE_ARGUMENT]) == (N.UNKNOWN, True)
        assert resolve([K.ABORTS_IF_NULL, K.NULLPTR_ASSIGNED]) == (N.UNKNOWN, True)

    def test_plain_unknown_is_not_a_conflict(self):
        assert resolve([K.NONNULL_ARGUMENT, K.UNKNOWN_ARGUMENT]) == (N.UNKNOWN, False)


class TestMergeEvidence:
    """Grouping, ordering and provenance"""

    def test_one_inference_per_symbol(self):
        inferences = merge_evidence([
            ev(K.UNCHECKED_DEREFERENCE, slot=1, symbol="c:@F@b"),
            ev(K.NULLPTR_RETURNED, slot=0, symbol="c:@F@a"),
            ev(K.NONNULL_ARGUMENT, slot=2, symbol="c:@F@b"),
        ])
        assert [i.symbol for i in inferences] == ["c:@F@a", "c:@F@b"]
        assert [s.slot for s in inferences[1].slots] == [1, 2]
        assert inferences[0].nullability(0) == N.NULLABLE
        assert inferences[1].nullability(3) is None

    def test_result_does_not_depend_on_order(self):
        evidence = [
            ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:24"),
            ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:29"),
            ev(K.NONNULL_ARGUMENT, location="input.cc:2:30"),
            ev(K.NULLPTR_RETURNED, slot=0, location="input.cc:3:3"),
            ev(K.NONNULL_RETURN, slot=0, location="input.cc:4:3"),
            ev(K.ANNOTATED_NULLABLE, slot=2, symbol="c:@F@other"),
        ]
        expected = [i.to_dict() for i in merge_evidence(evidence)]
        rng = random.Random(7)
        for _ in range(5):
            shuffled = list(evidence)
            rng.shuffle(shuffled)
            assert [i.to_dict() for i in merge_evidence(shuffled)] == expected

    def test_samples_are_distinct_and_sorted(self):
        inference, = merge_evidence([
            ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:29"),
            ev(K.NONNULL_ARGUMENT, location="input.cc:2:30"),
            ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:24"),
            ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:24"),
        ])
        samples = [(s.kind, s.location) for s in inference.slot(1).samples]
        assert samples == [
            (K.UNCHECKED_DEREFERENCE, "input.cc:1:24"),
            (K.UNCHECKED_DEREFERENCE, "input.cc:1:29"),
            (K.NONNULL_ARGUMENT, "input.cc:2:30"),
        ]

    def test_samples_are_truncated(self):
        evidence = [ev(K.NONNULL_ARGUMENT, location=f"input.cc:{n}:1") for n in range(1, 10)]
        inference, = merge_evidence(evidence, max_samples=3)
        assert len(inference.slot(1).samples) == 3
        assert inference.nullability(1) == N.NONNULL

    def test_samples_follow_line_numbers(self):
        """Test that line 10 sorts after line 2 and truncation keeps the earliest"""
        evidence = [ev(K.NONNULL_ARGUMENT, location=location)
                    for location in ("input.cc:10:1", "input.cc:2:5", "input.cc:2:12",
                                     "header.h:30:1")]
        inference, = merge_evidence(evidence, max_samples=3)
        assert [s.location for s in inference.slot(1).samples] == [
            "header.h:30:1", "input.cc:2:5", "input.cc:2:12",
        ]

    def test_location_key(self):
        assert location_key("dir/a.cc:10:2") == ("dir/a.cc", 10, 2)
        assert location_key("<unknown>") == ("<unknown>", 0, 0)

    def test_conflict_flag(self):
        inference, = merge_evidence([
            ev(K.ANNOTATED_NONNULL, location="a.cc:1:1"),
            ev(K.ANNOTATED_NULLABLE, location="b.cc:1:1"),
        ])
        assert inference.slot(1).nullability == N.UNKNOWN
        assert inference.slot(1).conflict

    def test_empty_batch(self):
        assert merge_evidence([]) == []


class TestMalformedEvidence:
    """Records naming a missing slot are dropped on their own"""

    def test_negative_slot(self):
        with pytest.raises(MalformedEvidenceError):
            ev(K.NONNULL_ARGUMENT, slot=-1).validate()

    def test_slot_beyond_arity(self):
        with pytest.raises(MalformedEvidenceError) as exc:
            ev(K.NONNULL_ARGUMENT, slot=3).validate(arity=2)
        assert "has no slot 3 (arity 2)" in str(exc.value)

    def test_dropped_with_diagnostic(self):
        diagnostics = []
        inferences = merge_evidence([
            ev(K.NONNULL_ARGUMENT, slot=1),
            ev(K.NULLABLE_ARGUMENT, slot=5),
        ], arities={"c:@F@target": 1}, diagnostics=diagnostics)

        assert [s.slot for s in inferences[0].slots] == [1]
        assert inferences[0].nullability(1) == N.NONNULL
        assert diagnostics == ["Dropping evidence: c:@F@target has no slot 5 (arity 1)"]

    def test_unknown_symbol_is_not_checked(self):
        inferences = merge_evidence([ev(K.NONNULL_ARGUMENT, slot=9)], arities={})
        assert inferences[0].nullability(9) == N.NONNULL


class TestRecords:
    """Serialized forms"""

    def test_evidence_to_dict(self):
        assert ev(K.UNCHECKED_DEREFERENCE, location="input.cc:1:24").to_dict() == {
            "symbol": "c:@F@target",
            "slot": 1,
            "kind": "UNCHECKED_DEREFERENCE",
            "location": "input.cc:1:24",
        }

    def test_inference_to_dict(self):
        inference, = merge_evidence([ev(K.NULLPTR_RETURNED, slot=0, location="input.cc:2:3")])
        assert inference.to_dict() == {
            "symbol": "c:@F@target",
            "slots": [{
                "slot": 0,
                "nullability": "NULLABLE",
                "conflict": False,
                "samples": [{"kind": "NULLPTR_RETURNED", "location": "input.cc:2:3"}],
            }],
        }
        assert str(inference) == "c:@F@target: 0=NULLABLE"
