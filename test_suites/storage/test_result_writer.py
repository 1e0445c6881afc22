#!/usr/bin/env python3
"""
Result Serializer Test Suite

Validates the JSON output document:
- Field names and order of each record
- UTF-8 encoding without byte order mark
- Deterministic bytes across repeated writes
- Atomic write (no partial file on failure)
"""

import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import orjson

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_fixtures import run_suite

from scan_catalog.core.errors import ResultWriteError
from scan_catalog.core.update_join import UpdateRecord
from scan_catalog.storage.result_writer import load_results, serialize_results, write_results


def _sample_results():
    return {
        "BBBB-2222": UpdateRecord(title="Mise à jour", description="Correctif", kbs=["KB2"],
                                  update_id="BBBB-2222",
                                  additional_info_urls=["http://support.microsoft.com/kb/2"]),
        "AAAA-1111": UpdateRecord(title="Security Update", description="", kbs=["KB4567890"],
                                  update_id="AAAA-1111"),
    }


def test_record_field_order():
    payload = serialize_results(_sample_results())
    record = orjson.loads(payload)["AAAA-1111"]

    assert list(record) == ["Title", "Description", "KBs", "CVEs", "UpdateID", "AdditionalInfoUrl"]
    assert record["CVEs"] == []
    assert record["AdditionalInfoUrl"] == []


def test_top_level_sorted_by_update_id():
    payload = serialize_results(_sample_results())

    assert list(orjson.loads(payload)) == ["AAAA-1111", "BBBB-2222"]
    assert payload.index(b"AAAA-1111") < payload.index(b"BBBB-2222")


def test_utf8_without_bom():
    payload = serialize_results(_sample_results())

    assert not payload.startswith(b"\xef\xbb\xbf")
    assert "Mise à jour".encode("utf-8") in payload


def test_empty_collection():
    assert serialize_results({}) == b"{}"


def test_write_and_load():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "out" / "wsusscn2.json"
        write_results(_sample_results(), path)

        loaded = load_results(path)
        assert loaded == _sample_results()
        assert [p.name for p in path.parent.iterdir()] == ["wsusscn2.json"]


def test_repeated_writes_are_byte_identical():
    with tempfile.TemporaryDirectory() as tmp:
        first = write_results(_sample_results(), Path(tmp) / "first.json")
        reordered = dict(reversed(list(_sample_results().items())))
        second = write_results(reordered, Path(tmp) / "second.json")

        assert first.read_bytes() == second.read_bytes()


def test_indent_option():
    payload = serialize_results(_sample_results(), indent=True)

    assert b"\n  \"AAAA-1111\"" in payload


def test_failed_write_leaves_no_file():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "wsusscn2.json"
        with patch("scan_catalog.storage.result_writer.os.replace", side_effect=OSError("disk full")):
            try:
                write_results(_sample_results(), path)
            except ResultWriteError as e:
                assert "disk full" in str(e)
            else:
                raise AssertionError("Expected ResultWriteError")

        assert list(Path(tmp).iterdir()) == []


def run_all_tests():
    tests = [
        test_record_field_order,
        test_top_level_sorted_by_update_id,
        test_utf8_without_bom,
        test_empty_collection,
        test_write_and_load,
        test_repeated_writes_are_byte_identical,
        test_indent_option,
        test_failed_write_leaves_no_file,
    ]
    return run_suite("Result Serializer", tests)


if __name__ == '__main__':
    sys.exit(run_all_tests())
