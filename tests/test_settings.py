"""Tests for multilogue/settings.py."""

import pytest

from multilogue.settings import parse_query, resolve_settings


def test_parse_query_types():
    settings = parse_query("temperature=0.7&top_p=abc&max_completion_tokens=12")
    assert settings == {"temperature": 0.7, "top_p": "abc", "max_completion_tokens": 12}
    assert isinstance(settings["temperature"], float)
    assert isinstance(settings["top_p"], str)
    assert isinstance(settings["max_completion_tokens"], int)


def test_parse_query_leading_question_mark():
    assert parse_query("?temperature=1") == {"temperature": 1.0}


def test_last_occurrence_wins():
    settings = resolve_settings([("temperature", "0.2"), ("temperature", "0.9")])
    assert settings["temperature"] == 0.9


def test_other_keys_pass_through_as_strings():
    settings = parse_query("model=deepseek-reasoner&seed=42")
    assert settings == {"model": "deepseek-reasoner", "seed": "42"}


def test_blank_values_kept():
    assert parse_query("stop=") == {"stop": ""}


def test_numeric_prefix_parsing():
    settings = parse_query("temperature=0.5x&max_completion_tokens=12.9")
    assert settings["temperature"] == 0.5
    assert settings["max_completion_tokens"] == 12


def test_unparseable_int_kept_as_string():
    assert parse_query("max_completion_tokens=lots")["max_completion_tokens"] == "lots"


def test_settings_are_read_only():
    settings = parse_query("temperature=0.7")
    with pytest.raises(TypeError):
        settings["temperature"] = 1.0  # type: ignore[index]


def test_empty_query():
    assert parse_query("") == {}


def test_thinking_budget_is_int():
    assert parse_query("thinking_budget=2048")["thinking_budget"] == 2048
