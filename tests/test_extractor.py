"""Tests for row-to-document extraction."""

from __future__ import annotations

import pytest

from tablerag.ingestion.extractor import (
    DocumentExtractor,
    ExtractionPolicy,
    NoDocumentsExtractedError,
    sanitize_metadata,
    sanitize_metadata_key,
)


def _trade_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "HS Code": "0101.2100",
        "Item Description": "Live pure-bred breeding horses",
        "Importer ": "Acme Stud Farms",
        "Supplier Name": "Hanover Equine",
        "origin": "Germany",
        "Port of Shipment": "Hamburg",
        "Quantity": "4",
        "UOM": "NOS",
        "Import Value in PKR": "12500000",
    }
    row.update(overrides)
    return row


def test_full_record_text_uses_labelled_fields():
    documents = DocumentExtractor().extract([_trade_row()])
    assert documents[0].text == (
        "HS Code: 0101.2100, Item: Live pure-bred breeding horses, Importer: Acme Stud Farms, "
        "Supplier: Hanover Equine, Origin: Germany, Port: Hamburg, Quantity: 4 NOS, Value: 12500000 PKR"
    )


def test_full_record_never_produces_empty_text():
    documents = DocumentExtractor().extract([{}, {"unrelated": ""}])
    assert len(documents) == 2
    for document in documents:
        assert document.text
        assert "HS Code: N/A" in document.text
        assert "Quantity: 0" in document.text
        assert document.text.endswith("Value: 0 PKR")


def test_single_field_mode_skips_empty_rows_without_renumbering():
    records = [{"Item": "A"}, {"Item": ""}, {"Other": "x"}, {"Item": None}, {"Item": "E"}]
    documents = DocumentExtractor().extract(records, ExtractionPolicy(use_full_record=False, field="Item"))
    assert [document.id for document in documents] == ["row_0", "row_4"]
    assert [document.text for document in documents] == ["A", "E"]


def test_single_field_serializes_non_string_values():
    records = [{"Quantity": 12}, {"Quantity": {"value": 3, "unit": "KG"}}]
    documents = DocumentExtractor().extract(records, ExtractionPolicy(use_full_record=False, field="Quantity"))
    assert documents[0].text == "12"
    assert documents[1].text == '{"value": 3, "unit": "KG"}'


def test_single_field_defaults_to_item_description():
    documents = DocumentExtractor().extract(
        [_trade_row(), _trade_row(**{"Item Description": ""})],
        ExtractionPolicy(use_full_record=False),
    )
    assert [document.text for document in documents] == ["Live pure-bred breeding horses"]


def test_offset_shifts_ids_but_not_row_index():
    documents = DocumentExtractor().extract([{"Item": "A"}, {"Item": "B"}], offset=50)
    assert [document.id for document in documents] == ["row_50", "row_51"]
    assert [document.metadata["rowIndex"] for document in documents] == [0, 1]


def test_no_documents_raises():
    with pytest.raises(NoDocumentsExtractedError, match="Total rows: 2"):
        DocumentExtractor().extract([{"Item": ""}, {}], ExtractionPolicy(use_full_record=False, field="Item"))


def test_empty_input_raises():
    with pytest.raises(NoDocumentsExtractedError):
        DocumentExtractor().extract([])


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Importer ", "Importer"),
        ("Port of Shipment", "Port_of_Shipment"),
        ("Import Value in PKR (Rs.)", "Import_Value_in_PKR_Rs"),
        ("__weird--key__", "weird_key"),
        ("%%%", ""),
        ("x" * 80, "x" * 50),
        ("a" * 49 + " b", "a" * 49),
    ],
)
def test_sanitize_metadata_key(raw: str, expected: str):
    assert sanitize_metadata_key(raw) == expected


@pytest.mark.parametrize("raw", ["Importer ", "a" * 49 + " b", "__A  b__c__", "Ünïcödé key", "x" * 120])
def test_sanitize_metadata_key_is_idempotent(raw: str):
    once = sanitize_metadata_key(raw)
    assert sanitize_metadata_key(once) == once


def test_sanitize_metadata_filters_and_coerces_values():
    record = {
        "Name": "Acme",
        "Count": 3,
        "Ratio": 0.5,
        "Active": False,
        "Tags": ["a", "b"],
        "Empty": "",
        "Missing": None,
        "   ": "blank key",
        "!!!": "no usable key",
    }
    metadata = sanitize_metadata(record, row_index=7)
    assert metadata == {
        "Name": "Acme",
        "Count": 3,
        "Ratio": 0.5,
        "Active": False,
        "Tags": "['a', 'b']",
        "rowIndex": 7,
    }


def test_row_index_always_present():
    metadata = sanitize_metadata({"rowIndex": "spoofed"}, row_index=2)
    assert metadata["rowIndex"] == 2
