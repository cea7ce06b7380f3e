"""Извлечение упоминаний"""

from collabcore.domains.collaboration.mentions import extract_mentions


def test_mentions_in_order():
    assert extract_mentions("hi @bob and @alice") == ["bob", "alice"]


def test_no_mentions():
    assert extract_mentions("nothing to see here") == []
    assert extract_mentions("") == []


def test_duplicates_preserved():
    assert extract_mentions("@bob, @bob!") == ["bob", "bob"]


def test_word_characters_only():
    assert extract_mentions("ping @jane.doe and @x_1-2") == ["jane", "x_1"]


def test_bare_at_sign_ignored():
    assert extract_mentions("email me @ home or a@b") == ["b"]
