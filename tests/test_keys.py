from __future__ import annotations

import pytest

from zm_platform.keys import (
    is_global_key,
    library_key,
    library_of,
    make_global_key,
    native_of,
    parse_library_key,
    split_global_key,
)


def test_global_key_splits_on_last_colon() -> None:
    k = make_global_key("group:42", "ABCD1234")
    assert k == "group:42:ABCD1234"
    assert split_global_key(k) == ("group:42", "ABCD1234")
    assert library_of(k) == "group:42"
    assert native_of(k) == "ABCD1234"


def test_make_global_key_rejects_empty_native() -> None:
    with pytest.raises(ValueError):
        make_global_key("user:1", "  ")


def test_library_key_validation() -> None:
    assert library_key("USER", 7) == "user:7"
    assert parse_library_key("group:9") == ("group", "9")
    with pytest.raises(ValueError):
        library_key("team", 1)
    with pytest.raises(ValueError):
        library_key("user", "")
    with pytest.raises(ValueError):
        parse_library_key("user:")


def test_is_global_key() -> None:
    assert is_global_key("user:1:K1")
    assert not is_global_key("K1")
    assert not is_global_key("team:1:K1")
