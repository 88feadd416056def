import pytest

from lockdesk import unlock_gate
from lockdesk.errors import SecurityKeyRejected


def test_whitespace_is_removed_before_counting():
    assert unlock_gate.validate("1234 5678 9012 3456 7890") == "12345678901234567890"
    assert unlock_gate.validate(" 1234\t5678\n9012 3456 7890 ") == "12345678901234567890"


@pytest.mark.parametrize("raw", ["", None, "1" * 19, "1" * 21, "1234 5678 9012 345678", "     "])
def test_wrong_lengths_are_rejected(raw):
    with pytest.raises(SecurityKeyRejected):
        unlock_gate.validate(raw)


@pytest.mark.parametrize("raw", [12345678901234567890, ["1234"], {"key": "x"}])
def test_non_text_keys_are_rejected(raw):
    with pytest.raises(SecurityKeyRejected, match="must be text"):
        unlock_gate.validate(raw)


def test_any_characters_count():
    # the device decides whether the key is right, not the console
    assert unlock_gate.validate("abcdefghij-KLMNOPQR!") == "abcdefghij-KLMNOPQR!"


def test_mask_keeps_only_the_tail():
    assert unlock_gate.mask("12345678901234567890") == "*" * 16 + "7890"
    assert unlock_gate.mask("abc") == "***"
    assert unlock_gate.mask(None) is None
