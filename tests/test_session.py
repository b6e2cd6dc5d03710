"""
Onboarding name handling.
"""
import pytest

from emoscan.session import MAX_NAME_LENGTH, SessionIdentity


@pytest.mark.parametrize("raw", ["", "   ", None, 42])
def test_blank_names_fall_back(raw):
    assert SessionIdentity.from_input(raw).name == "User"


def test_custom_fallback():
    assert SessionIdentity.from_input(" ", fallback="Guest").name == "Guest"


def test_name_is_trimmed_and_collapsed():
    assert SessionIdentity.from_input("  Ada   Lovelace ").name == "Ada Lovelace"


def test_long_names_are_truncated():
    assert len(SessionIdentity.from_input("x" * 500).name) == MAX_NAME_LENGTH
