import hashlib

import pytest

from lwwcollection.canonical_json import canonical_bytes, canonical_dumps
from lwwcollection.collection import Entry
from lwwcollection.hashing import hash_code, sha256_hash, simple_hash


@pytest.mark.parametrize("text, expected", [
    ("", 0),
    ("a", 97),
    ("ab", 3105),
    ("hello", 99162322),
    # Overflows to the smallest signed 32-bit value.
    ("polygenelubricants", -2147483648),
])
def test_hash_code_matches_32_bit_rolling_hash(text, expected):
    assert hash_code(text) == expected


def test_hash_code_uses_utf16_code_units():
    # U+1F600 is the surrogate pair D83D DE00.
    assert hash_code("\U0001F600") == 0xD83D * 31 + 0xDE00
    assert hash_code("é") == 0xE9


def test_hash_code_stays_in_signed_32_bit_range():
    value = hash_code("x" * 10_000)
    assert -(2 ** 31) <= value < 2 ** 31


def test_simple_hash_is_decimal_string():
    assert simple_hash("hello") == "99162322"
    assert simple_hash("polygenelubricants") == "-2147483648"


def test_sha256_hash():
    assert sha256_hash("abc") == hashlib.sha256(b"abc").hexdigest()
    assert len(sha256_hash("")) == 64


def test_canonical_dumps_sorts_keys_and_encodes_entries():
    entries = {"b": Entry(2, {"y": 1, "x": 2}), "a": Entry(1, "é")}
    assert canonical_dumps(entries) == '{"a":[1,"é"],"b":[2,{"x":2,"y":1}]}'
    assert canonical_bytes(entries) == canonical_dumps(entries).encode("utf-8")


def test_canonical_dumps_writes_non_finite_floats_as_null():
    entries = {"a": Entry(1, float("nan")), "b": Entry(2, [float("inf"), -float("inf"), 1.5])}
    assert canonical_dumps(entries) == '{"a":[1,null],"b":[2,[null,null,1.5]]}'
