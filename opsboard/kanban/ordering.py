"""
Position keys for ordering cards inside a board column.

A key is a fractional index over the base-62 alphabet 0-9A-Za-z:

    <integer part><fractional part>

The integer part starts with a head letter that encodes its own length
(a=2, b=3 ... z=27 for positive, Z=2, Y=3 ... A=27 for negative integers)
followed by base-62 digits. The fractional part is any base-62 tail that
does not end in '0'. Plain string comparison orders the keys, so a key
between any two neighbours always exists and inserting one never touches
any other card.

Only this module constructs PositionKey values: generate_key_between() for
new keys, PositionKey.parse() for keys read back from the task API.
"""
from functools import total_ordering
from typing import List, Optional

DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
ZERO = DIGITS[0]
INTEGER_ZERO = "a0"                   # key for the first card of an empty column
SMALLEST_INTEGER = "A" + ZERO * 26

_ORIGIN = object()


@total_ordering
class PositionKey:
    """Opaque, totally ordered position of a card within its column."""

    __slots__ = ("_value",)

    def __init__(self, value: str, _origin: object = None):
        if _origin is not _ORIGIN:
            raise TypeError(
                "PositionKey cannot be built directly; use "
                "generate_key_between() or PositionKey.parse()"
            )
        self._value = value

    @classmethod
    def parse(cls, value: str) -> "PositionKey":
        """Validate a stored key. Raises ValueError if it is malformed."""
        if not isinstance(value, str):
            raise ValueError(
                f"Position key must be a string, got {type(value).__name__}"
            )
        _validate_order_key(value)
        return cls(value, _ORIGIN)

    @property
    def value(self) -> str:
        return self._value

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"PositionKey({self._value!r})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, PositionKey):
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other) -> bool:
        if not isinstance(other, PositionKey):
            return NotImplemented
        return self._value < other._value

    def __hash__(self) -> int:
        return hash(self._value)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Public API
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def generate_key_between(
    prev: Optional[PositionKey],
    next_: Optional[PositionKey],
) -> PositionKey:
    """
    Return a key strictly between prev and next_.

    None means "no bound": (None, k) sorts before k, (k, None) after k,
    and (None, None) is the fixed default "a0".

    Raises:
        ValueError: if prev >= next_ (caller error).
    """
    a = _unwrap(prev)
    b = _unwrap(next_)
    return PositionKey(_key_between(a, b), _ORIGIN)


def generate_n_keys_between(
    prev: Optional[PositionKey],
    next_: Optional[PositionKey],
    n: int,
) -> List[PositionKey]:
    """Return n ascending keys, all strictly between prev and next_."""
    return [
        PositionKey(k, _ORIGIN)
        for k in _n_keys_between(_unwrap(prev), _unwrap(next_), n)
    ]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Key arithmetic (plain strings)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _unwrap(key: Optional[PositionKey]) -> Optional[str]:
    if key is None:
        return None
    if not isinstance(key, PositionKey):
        raise TypeError(
            f"Expected PositionKey or None, got {type(key).__name__}"
        )
    return key.value


def _key_between(a: Optional[str], b: Optional[str]) -> str:
    if a is not None and b is not None and a >= b:
        raise ValueError(f"Position keys out of order: {a!r} >= {b!r}")

    if a is None:
        if b is None:
            return INTEGER_ZERO
        ib = _integer_part(b)
        fb = b[len(ib):]
        if ib == SMALLEST_INTEGER:
            return ib + _midpoint("", fb)
        if ib < b:
            return ib
        res = _decrement_integer(ib)
        if res is None:
            raise ValueError("Cannot generate a key before the smallest key")
        return res

    if b is None:
        ia = _integer_part(a)
        fa = a[len(ia):]
        i = _increment_integer(ia)
        return ia + _midpoint(fa, None) if i is None else i

    ia = _integer_part(a)
    fa = a[len(ia):]
    ib = _integer_part(b)
    fb = b[len(ib):]
    if ia == ib:
        return ia + _midpoint(fa, fb)
    i = _increment_integer(ia)
    if i is None:
        raise ValueError("Cannot generate a key after the largest key")
    if i < b:
        return i
    return ia + _midpoint(fa, None)


def _n_keys_between(a: Optional[str], b: Optional[str], n: int) -> List[str]:
    if n <= 0:
        return []
    if n == 1:
        return [_key_between(a, b)]
    if b is None:
        c = _key_between(a, b)
        keys = [c]
        for _ in range(n - 1):
            c = _key_between(c, b)
            keys.append(c)
        return keys
    if a is None:
        c = _key_between(a, b)
        keys = [c]
        for _ in range(n - 1):
            c = _key_between(a, c)
            keys.append(c)
        keys.reverse()
        return keys
    mid = n // 2
    c = _key_between(a, b)
    return _n_keys_between(a, c, mid) + [c] + _n_keys_between(c, b, n - mid - 1)


def _midpoint(a: str, b: Optional[str]) -> str:
    """
    Fractional midpoint of a and b (b=None means 1). Both are fractional
    parts with no trailing zero, a < b.
    """
    if b is not None and a >= b:
        raise ValueError(f"Fractions out of order: {a!r} >= {b!r}")
    if a.endswith(ZERO) or (b and b.endswith(ZERO)):
        raise ValueError("Fractional part must not end in a zero digit")

    if b:
        # Shared prefix is copied, the midpoint is taken on the remainder
        n = 0
        while n < len(b) and (a[n] if n < len(a) else ZERO) == b[n]:
            n += 1
        if n > 0:
            return b[:n] + _midpoint(a[n:], b[n:])

    digit_a = DIGITS.index(a[0]) if a else 0
    digit_b = DIGITS.index(b[0]) if b is not None else len(DIGITS)
    if digit_b - digit_a > 1:
        return DIGITS[(digit_a + digit_b + 1) // 2]
    # Consecutive digits: extend the key by one digit
    if b is not None and len(b) > 1:
        return b[:1]
    return DIGITS[digit_a] + _midpoint(a[1:], None)


def _integer_length(head: str) -> int:
    if "a" <= head <= "z":
        return ord(head) - ord("a") + 2
    if "A" <= head <= "Z":
        return ord("Z") - ord(head) + 2
    raise ValueError(f"Invalid position key head: {head!r}")


def _integer_part(key: str) -> str:
    if not key:
        raise ValueError("Position key must not be empty")
    length = _integer_length(key[0])
    if length > len(key):
        raise ValueError(f"Invalid position key: {key!r}")
    return key[:length]


def _validate_integer(integer: str) -> None:
    if len(integer) != _integer_length(integer[0]):
        raise ValueError(f"Invalid integer part of position key: {integer!r}")


def _validate_order_key(key: str) -> None:
    if key == SMALLEST_INTEGER:
        raise ValueError(f"Invalid position key: {key!r}")
    integer = _integer_part(key)
    if any(ch not in DIGITS for ch in key[1:]):
        raise ValueError(f"Invalid digit in position key: {key!r}")
    if key[len(integer):].endswith(ZERO):
        raise ValueError(f"Invalid position key (trailing zero): {key!r}")


def _increment_integer(x: str) -> Optional[str]:
    _validate_integer(x)
    head, digits = x[0], list(x[1:])
    carry = True
    i = len(digits) - 1
    while carry and i >= 0:
        d = DIGITS.index(digits[i]) + 1
        if d == len(DIGITS):
            digits[i] = ZERO
        else:
            digits[i] = DIGITS[d]
            carry = False
        i -= 1
    if not carry:
        return head + "".join(digits)
    if head == "Z":
        return "a" + ZERO
    if head == "z":
        return None
    h = chr(ord(head) + 1)
    if h > "a":
        digits.append(ZERO)
    else:
        digits.pop()
    return h + "".join(digits)


def _decrement_integer(x: str) -> Optional[str]:
    _validate_integer(x)
    head, digits = x[0], list(x[1:])
    borrow = True
    i = len(digits) - 1
    while borrow and i >= 0:
        d = DIGITS.index(digits[i]) - 1
        if d == -1:
            digits[i] = DIGITS[-1]
        else:
            digits[i] = DIGITS[d]
            borrow = False
        i -= 1
    if not borrow:
        return head + "".join(digits)
    if head == "a":
        return "Z" + DIGITS[-1]
    if head == "A":
        return None
    h = chr(ord(head) - 1)
    if h < "Z":
        digits.append(DIGITS[-1])
    else:
        digits.pop()
    return h + "".join(digits)
