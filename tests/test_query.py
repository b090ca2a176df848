import pytest

from drivesync.providers.gdrive.query import Contains, Not, QueryMatch, TimeComparison, build_query, has_full_text


def test_no_matches_only_excludes_trashed():
    assert build_query(None) == "trashed=false"
    assert build_query([]) == "trashed=false"


def test_clauses_in_one_match_are_and_combined():
    q = build_query([QueryMatch(name="a.md", parent="folder-1")])
    assert q == "((name='a.md' and 'folder-1' in parents)) and trashed=false"


def test_matches_are_or_combined():
    q = build_query([QueryMatch(properties={"path": "a.md"}), QueryMatch(properties={"path": "b.md"})])
    assert q == (
        "((properties has { key='path' and value='a.md' }) or "
        "(properties has { key='path' and value='b.md' })) and trashed=false"
    )


def test_string_search_variants():
    q = build_query([QueryMatch(name=[Contains("draft"), Not("x.md")], mime_type="text/plain")])
    assert "name contains 'draft'" in q
    assert "name != 'x.md'" in q
    assert "mimeType='text/plain'" in q


def test_starred_full_text_and_time():
    q = build_query(
        [QueryMatch(starred=True, query="hello", modified_time=TimeComparison(">", "2024-01-01T00:00:00.000Z"))]
    )
    assert "starred=true" in q
    assert "fullText contains 'hello'" in q
    assert "modifiedTime > '2024-01-01T00:00:00.000Z'" in q


def test_quotes_are_escaped():
    q = build_query([QueryMatch(name="it's")])
    assert "name='it\\'s'" in q


def test_empty_match_is_rejected():
    with pytest.raises(ValueError):
        build_query([QueryMatch()])


def test_invalid_time_operator_is_rejected():
    with pytest.raises(ValueError):
        build_query([QueryMatch(modified_time=TimeComparison(">=", "2024-01-01"))])


def test_has_full_text():
    assert has_full_text([QueryMatch(name="a"), QueryMatch(query="b")]) is True
    assert has_full_text([QueryMatch(name="a")]) is False
    assert has_full_text(None) is False
