"""Tests for demogen/rng.py: seeded Mulberry32 generator."""

from datetime import datetime

import pytest

from demogen.rng import SeededRNG, generate_seed, hash_string


class TestDeterminism:
    def test_same_seed_same_sequence(self):
        a = SeededRNG("acme")
        b = SeededRNG("acme")
        assert [a.next() for _ in range(50)] == [b.next() for _ in range(50)]

    def test_different_seeds_diverge(self):
        a = SeededRNG("acme")
        b = SeededRNG("acme-2")
        assert [a.next() for _ in range(10)] != [b.next() for _ in range(10)]

    def test_int_and_string_seeds(self):
        assert SeededRNG(42).next() == SeededRNG(42).next()
        # Zero state is never used
        assert SeededRNG(0).state == 1

    def test_hash_string_is_stable_and_nonzero(self):
        assert hash_string("abc") == hash_string("abc")
        assert hash_string("") == 1
        assert hash_string("abc") > 0

    def test_generate_seed_is_hex(self):
        seed = generate_seed()
        assert len(seed) == 32
        int(seed, 16)


class TestRanges:
    def test_next_in_unit_interval(self):
        rng = SeededRNG("unit")
        for _ in range(1000):
            v = rng.next()
            assert 0 <= v < 1

    def test_randint_inclusive(self):
        rng = SeededRNG("ints")
        seen = {rng.randint(1, 3) for _ in range(500)}
        assert seen == {1, 2, 3}

    def test_uniform_bounds(self):
        rng = SeededRNG("uniform")
        for _ in range(200):
            assert 5 <= rng.uniform(5, 10) < 10


class TestSequences:
    def test_pick_empty_raises(self):
        with pytest.raises(ValueError):
            SeededRNG("x").pick([])

    def test_pick_weighted_ignores_zero_weight(self):
        rng = SeededRNG("weights")
        picks = {rng.pick_weighted(["a", "b"], [0, 1]) for _ in range(100)}
        assert picks == {"b"}

    def test_pick_weighted_length_mismatch(self):
        with pytest.raises(ValueError):
            SeededRNG("x").pick_weighted(["a"], [1, 2])

    def test_pick_multiple_distinct(self):
        picks = SeededRNG("multi").pick_multiple(list(range(10)), 4)
        assert len(set(picks)) == 4

    def test_pick_multiple_too_many(self):
        with pytest.raises(ValueError):
            SeededRNG("x").pick_multiple([1, 2], 3)

    def test_shuffle_is_permutation(self):
        items = list(range(20))
        out = SeededRNG("shuffle").shuffle(items)
        assert sorted(out) == items
        assert items == list(range(20))  # input untouched


class TestDates:
    def test_date_within_range(self):
        rng = SeededRNG("dates")
        start, end = datetime(2024, 1, 1), datetime(2024, 1, 31)
        for _ in range(100):
            assert start <= rng.date(start, end) <= end

    def test_date_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            SeededRNG("x").date(datetime(2024, 2, 1), datetime(2024, 1, 1))

    def test_business_date_is_weekday(self):
        rng = SeededRNG("biz")
        for _ in range(100):
            d = rng.business_date(datetime(2024, 3, 1), datetime(2024, 3, 31))
            assert d.weekday() < 5


class TestChildren:
    def test_child_is_reproducible(self):
        a = SeededRNG("parent").child("deals")
        b = SeededRNG("parent").child("deals")
        assert a.next() == b.next()

    def test_child_does_not_advance_parent(self):
        parent = SeededRNG("parent")
        untouched = SeededRNG("parent")
        parent.child("x")
        assert parent.next() == untouched.next()

    def test_children_are_independent(self):
        parent = SeededRNG("parent")
        assert parent.child("a").next() != parent.child("b").next()

    def test_uuid_is_deterministic_v4(self):
        a = SeededRNG("ids").uuid()
        assert a == SeededRNG("ids").uuid()
        assert a[14] == "4"
