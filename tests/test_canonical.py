import pytest

from amorce import ValidationError, canonical_sha256_hex, canonicalize, sha256_hex


def test_keys_sorted_and_compact():
    assert canonicalize({"b": 2, "a": 1}) == b'{"a":1,"b":2}'
    assert sha256_hex(b'{"a":1,"b":2}') == "43258cff783fe7036d8a43033f830adfc60ec037382473548ac742b888292777"
    assert canonical_sha256_hex({"b": 2, "a": 1}) == "43258cff783fe7036d8a43033f830adfc60ec037382473548ac742b888292777"


def test_same_record_any_insertion_order():
    a = {"z": {"y": 1, "x": [3, 1, 2]}, "a": None, "m": True}
    b = {"m": True, "a": None, "z": {"x": [3, 1, 2], "y": 1}}
    assert canonicalize(a) == canonicalize(b)
    assert canonicalize(a) == b'{"a":null,"m":true,"z":{"x":[3,1,2],"y":1}}'


def test_arrays_keep_order_and_nested_objects_sort():
    out = canonicalize({"items": [{"b": 1, "a": 2}, "z", "a"]})
    assert out == b'{"items":[{"a":2,"b":1},"z","a"]}'


def test_code_point_order_and_utf8():
    out = canonicalize({"é": 1, "Z": 2, "a": 3})
    assert out == '{"Z":2,"a":3,"é":1}'.encode("utf-8")


def test_rejects_non_json_values():
    with pytest.raises(ValidationError):
        canonicalize({"x": float("nan")})
    with pytest.raises(ValidationError):
        canonicalize({"x": {1, 2}})
    with pytest.raises(ValidationError):
        sha256_hex("not bytes")
