from hypothesis import given, strategies as st

from security.validation import (
    ValidationError,
    collect_issues,
    is_valid_room_id,
    is_valid_username,
    normalize_room_id,
    normalize_username,
    sanitize,
    validate_room_id,
    validate_username,
)


def test_sanitize_strips_markup_and_script_fragments():
    assert sanitize("  <b>hi</b> ", 20) == "bhi/b"
    assert sanitize("javascript:alert(1)", 50) == "alert(1)"
    assert sanitize("JavaScript:x", 50) == "x"
    assert sanitize("x onclick=y", 50) == "x y"
    assert sanitize("a\0b", 10) == "ab"
    assert sanitize("`quoted'\"", 20) == "quoted"


def test_sanitize_handles_none_and_truncates():
    assert sanitize(None, 10) == ""
    assert sanitize("abcdefgh", 4) == "abcd"
    assert sanitize("   ", 4) == ""


def test_room_code_with_punctuation_is_rejected():
    room_id = normalize_room_id("ab!!")
    assert room_id == "AB"
    assert not is_valid_room_id(room_id)
    issues = validate_room_id(room_id)
    assert issues and issues[0].field == "room_id"


def test_room_code_normalization():
    assert normalize_room_id(" abcd ") == "ABCD"
    assert normalize_room_id("ab12") == "AB"
    assert normalize_room_id(None) == ""
    assert validate_room_id("")[0].message == "Enter a 4-letter room code."
    assert validate_room_id("ABCD") == []


def test_sanitizer_is_not_the_acceptance_gate():
    # Tags are stripped and what remains happens to be a valid name.
    assert normalize_username("<script>") == "script"
    assert is_valid_username("script")

    # A nested scheme survives the single removal pass; the allow-list still refuses it.
    cleaned = normalize_username("javajavascript:script:")
    assert cleaned == "javascript:"
    assert not is_valid_username(cleaned)

    cleaned = normalize_username("<script>alert('x')</script>")
    assert not is_valid_username(cleaned)


def test_username_rules():
    assert is_valid_username("alice")
    assert is_valid_username("player_1")
    assert is_valid_username("a-b")
    assert not is_valid_username("ab")
    assert not is_valid_username("a" * 21)
    assert not is_valid_username("ab!!")
    assert not is_valid_username(None)
    assert validate_username("ab!!")[0].field == "username"


def test_validation_error_joins_messages():
    issues = collect_issues(validate_room_id(""), validate_username("x"))
    error = ValidationError(issues)
    assert len(error.issues) == 2
    assert str(error).splitlines() == [issue.message for issue in issues]


@given(st.text(), st.integers(min_value=0, max_value=64))
def test_sanitize_output_is_bounded_and_free_of_markup(value, max_length):
    cleaned = sanitize(value, max_length)
    assert len(cleaned) <= max_length
    assert not set(cleaned) & set("<>\"'`\0")


@given(st.text())
def test_normalized_room_code_only_has_letters(value):
    room_id = normalize_room_id(value)
    assert all("A" <= char <= "Z" for char in room_id)
    assert is_valid_room_id(room_id) == (len(room_id) == 4)
