"""
Tests for position keys.

Covers:
    - generate_key_between()     — defaults, bounds, midpoints, key extension
    - generate_n_keys_between()  — ordered batches
    - PositionKey                — parse validation, ordering, no direct construction
"""

import pytest

from opsboard.kanban.ordering import (
    PositionKey,
    generate_key_between,
    generate_n_keys_between,
)


def k(value):
    return PositionKey.parse(value)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# generate_key_between
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestGenerateKeyBetween:

    def test_empty_column_gets_default(self):
        assert generate_key_between(None, None) == k("a0")

    def test_after_last(self):
        assert generate_key_between(k("a0"), None) == k("a1")

    def test_before_first(self):
        key = generate_key_between(None, k("a0"))
        assert key == k("Zz")
        assert key < k("a0")

    def test_gap_in_integer_part(self):
        assert generate_key_between(k("a0"), k("a2")) == k("a1")

    def test_adjacent_integers_extend_with_fraction(self):
        key = generate_key_between(k("a0"), k("a1"))
        assert key == k("a0V")
        assert k("a0") < key < k("a1")

    def test_between_fractions(self):
        key = generate_key_between(k("a0"), k("a0V"))
        assert k("a0") < key < k("a0V")

    def test_out_of_order_raises(self):
        with pytest.raises(ValueError):
            generate_key_between(k("a2"), k("a1"))

    def test_equal_keys_raise(self):
        with pytest.raises(ValueError):
            generate_key_between(k("a1"), k("a1"))

    def test_plain_strings_rejected(self):
        with pytest.raises(TypeError):
            generate_key_between("a0", None)

    def test_strictly_between_for_many_pairs(self):
        keys = [generate_key_between(None, None)]
        for _ in range(30):
            keys.append(generate_key_between(keys[-1], None))
        for a, c in zip(keys, keys[1:]):
            b = generate_key_between(a, c)
            assert a < b < c

    def test_append_is_strictly_increasing(self):
        last = generate_key_between(None, None)
        for _ in range(200):
            nxt = generate_key_between(last, None)
            assert nxt > last
            last = nxt

    def test_prepend_is_strictly_decreasing(self):
        first = generate_key_between(None, None)
        for _ in range(200):
            prev = generate_key_between(None, first)
            assert prev < first
            first = prev

    def test_repeated_insert_after_same_neighbour(self):
        """Inserting right after the same lower neighbour never collides or escapes."""
        low, high = k("a0"), k("a1")
        upper = high
        seen = set()
        for _ in range(50):
            key = generate_key_between(low, upper)
            assert low < key < high
            assert key not in seen
            seen.add(key)
            upper = key
        # Neighbours themselves are untouched
        assert low == k("a0") and high == k("a1")

    def test_fraction_never_ends_in_zero(self):
        low, upper = k("a0"), k("a1")
        for _ in range(50):
            key = generate_key_between(low, upper)
            assert not key.value[2:].endswith("0")
            upper = key


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# generate_n_keys_between
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestGenerateNKeys:

    def test_zero(self):
        assert generate_n_keys_between(None, None, 0) == []

    def test_empty_column(self):
        assert [key.value for key in generate_n_keys_between(None, None, 3)] == ["a0", "a1", "a2"]

    def test_bounded_batch_is_sorted_and_inside(self):
        keys = generate_n_keys_between(k("a0"), k("a1"), 10)
        assert len(keys) == 10
        assert keys == sorted(keys)
        assert len(set(keys)) == 10
        assert all(k("a0") < key < k("a1") for key in keys)

    def test_before_first(self):
        keys = generate_n_keys_between(None, k("a0"), 4)
        assert keys == sorted(keys)
        assert keys[-1] < k("a0")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PositionKey
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestPositionKey:

    def test_direct_construction_refused(self):
        with pytest.raises(TypeError):
            PositionKey("a0")

    @pytest.mark.parametrize("value", ["a0", "a1V", "Zz", "b00", "a0zz"])
    def test_parse_valid(self, value):
        assert PositionKey.parse(value).value == value

    @pytest.mark.parametrize("value", ["", "a", "a00", "a0-", "!0", "A" + "0" * 26])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            PositionKey.parse(value)

    def test_parse_non_string(self):
        with pytest.raises(ValueError):
            PositionKey.parse(None)

    def test_ordering_and_equality(self):
        assert k("Zz") < k("a0") < k("a0V") < k("a1") < k("b00")
        assert k("a1") == k("a1")
        assert hash(k("a1")) == hash(k("a1"))
        assert sorted([k("a2"), k("a0"), k("a1")]) == [k("a0"), k("a1"), k("a2")]

    def test_str(self):
        assert str(k("a1")) == "a1"
