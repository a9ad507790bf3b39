"""Tests for the tiered structured-output extractor."""

import json

import pytest

from articlebot.core.errors import ExtractionError
from articlebot.core.extractor import (
    DOSSIER_SHAPE,
    TOPICS_SHAPE,
    ExtractionTier,
    close_structure,
    cut_to_last_complete_value,
    extract,
    extract_with_delegate,
    normalize,
    strip_trailing_commas,
    salvage_array,
)

VALID_SAMPLES = [
    '{"topics": [{"titre": "A", "sources": []}]}',
    '{"a": 1, "b": [1, 2, 3], "c": {"d": null}}',
    "[1, 2, 3]",
    '"just a string"',
    "null",
    "42",
    '{"accents": "éàç", "escaped": "quote \\" inside"}',
]


@pytest.mark.parametrize("sample", VALID_SAMPLES)
def test_valid_json_is_returned_untouched(sample):
    """Well-formed JSON parses at tier 1 and equals json.loads."""
    result = extract(sample)
    assert result.value == json.loads(sample)
    assert result.tier == ExtractionTier.DIRECT
    assert result.repaired is False


def test_code_fence_and_trailing_commas_are_normalized():
    raw = 'Voici le JSON:\n```json\n{"topics": [{"titre": "A",},],}\n```\nBonne lecture'
    result = extract(raw, TOPICS_SHAPE)
    assert result.tier == ExtractionTier.NORMALIZED
    assert result.value == {"topics": [{"titre": "A"}]}


def test_trailing_commas_inside_strings_are_kept():
    raw = '{"titre": "Fusions, ]acquisitions", "tags": ["a, }", "b",],}'
    result = extract(raw)
    assert result.tier == ExtractionTier.NORMALIZED
    assert result.value == {"titre": "Fusions, ]acquisitions", "tags": ["a, }", "b"]}


def test_strip_trailing_commas_respects_escaped_quotes():
    text = '{"citation": "il a dit \\"oui, \\"]", "n": [1, 2 , ] }'
    assert strip_trailing_commas(text) == '{"citation": "il a dit \\"oui, \\"]", "n": [1, 2  ] }'


def test_smart_quotes_are_replaced():
    raw = "{“topics”: [{“titre”: “A”}]}"
    result = extract(raw, TOPICS_SHAPE)
    assert result.value["topics"][0]["titre"] == "A"


def test_bare_list_is_wrapped_into_array_field():
    result = extract('[{"titre": "A"}]', TOPICS_SHAPE)
    assert result.value == {"topics": [{"titre": "A"}]}


def test_truncated_response_is_closed():
    raw = '{"topics": [{"titre": "A"}, {"titre": "B", "resume": "coupé en plein'
    result = extract(raw, TOPICS_SHAPE)
    assert result.tier == ExtractionTier.REPAIRED
    assert [t["titre"] for t in result.value["topics"]] == ["A", "B"]


def test_close_structure_strips_dangling_separator():
    assert json.loads(close_structure('{"a": 1, "b": [1, 2,')) == {"a": 1, "b": [1, 2]}


def test_cut_to_last_complete_value_requires_enough_text():
    assert cut_to_last_complete_value('{"alpha": 1, "b": tr') == '{"alpha": 1}'
    assert cut_to_last_complete_value('{"a": 1,' + " " * 50) is None


ORIGINAL = {"name": "x", "count": 3, "items": [{"id": 1}, {"id": 2}, {"id": 3}]}


@pytest.mark.parametrize("cut", range(1, 16))
def test_truncation_never_drops_a_non_last_field(cut):
    text = json.dumps(ORIGINAL)[:-cut]
    try:
        result = extract(text)
    except ExtractionError:
        return
    value = result.value
    assert value["name"] == "x"
    assert value["count"] == 3
    items = value["items"]
    assert 1 <= len(items) <= 3
    assert items[:-1] == ORIGINAL["items"][: len(items) - 1]


def test_salvage_recovers_well_formed_entries():
    raw = '{"topics": [{"titre": "A"}, {"titre": "B" "oops"}, {"titre": "C"}]}'
    result = extract(raw, TOPICS_SHAPE)
    assert result.tier == ExtractionTier.SALVAGED
    assert [t["titre"] for t in result.value["topics"]] == ["A", "C"]
    assert result.dropped_fragments == 1


def test_salvage_without_array_field():
    assert salvage_array('{"other": []}', "topics") == (None, 0)


def test_missing_root_key_is_reported():
    with pytest.raises(ExtractionError) as exc_info:
        extract('{"results": [1, 2]}', TOPICS_SHAPE)
    assert exc_info.value.reason == "missing expected 'topics' field"


def test_unparseable_text_raises():
    with pytest.raises(ExtractionError) as exc_info:
        extract("Désolé, je ne peux pas répondre.", TOPICS_SHAPE)
    assert exc_info.value.reason == "unparseable"
    assert "Désolé" in exc_info.value.raw_head_tail


def test_normalize_keeps_outer_object_only():
    assert normalize('prefix {"a": 1} suffix') == '{"a": 1}'


@pytest.mark.asyncio
async def test_delegate_converts_free_text(stub_text_port):
    delegate = stub_text_port(['{"dossierEditorial": {"angleEditorial": "Angle"}}'], name="gemini")
    result = await extract_with_delegate("Le dossier: angle intéressant", DOSSIER_SHAPE, delegate)
    assert result.tier == ExtractionTier.DELEGATED
    assert result.value["dossierEditorial"]["angleEditorial"] == "Angle"
    assert delegate.calls[0]["temperature"] == 0.0
    assert delegate.calls[0]["response_format"] == "json"


@pytest.mark.asyncio
async def test_delegate_not_used_when_unconfigured(stub_text_port):
    delegate = stub_text_port(['{"ok": true}'], configured=False)
    with pytest.raises(ExtractionError):
        await extract_with_delegate("pas du json", DOSSIER_SHAPE, delegate)
    assert delegate.calls == []


@pytest.mark.asyncio
async def test_delegate_skipped_for_direct_success(stub_text_port):
    delegate = stub_text_port()
    result = await extract_with_delegate('{"a": 1}', DOSSIER_SHAPE, delegate)
    assert result.tier == ExtractionTier.DIRECT
    assert delegate.calls == []
