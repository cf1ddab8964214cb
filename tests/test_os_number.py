import doctest

import pytest

from vendorhub.orders import os_number
from vendorhub.orders.os_number import extract_os_number, extract_os_number_from_parts, to_half_width


@pytest.mark.parametrize("text", [
    "(OS-01115463)",
    "OS01115463",
    "OS 01115463",
    "os-01115463",
    "（ＯＳ－０１１１５４６３）",
    "ＯＳ　０１１１５４６３",
    "OS–01115463",
    "OSー01115463",
    "発注番号: OS_01115463 よろしく",
])
def test_variants_normalise_to_canonical(text):
    assert extract_os_number(text) == "OS-01115463"


@pytest.mark.parametrize("text", [
    "千葉県 白井市中 149-1MT2F バース16",
    "",
    None,
    "POS-123",
    "OSAKA 1-2-3",
    "OS-12AB",
])
def test_no_reference(text):
    assert extract_os_number(text) is None


def test_first_match_wins():
    assert extract_os_number("OS-111 then OS-222") == "OS-111"


def test_parts_take_first_successful_field():
    assert extract_os_number_from_parts([None, "", "no code", "ref OS-42", "OS-99"]) == "OS-42"
    assert extract_os_number_from_parts([]) is None


def test_half_width_conversion():
    assert to_half_width("ＡＢＣ１２３－（）") == "ABC123-()"
    assert to_half_width("a　b") == "a b"


def test_module_doctests():
    assert doctest.testmod(os_number).failed == 0
