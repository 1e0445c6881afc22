#!/usr/bin/env python3
"""
Update Join Test Suite

Validates the descriptor join engine:
- KB inclusion policy and record shape
- Fail-fast handling of unreadable or malformed descriptors
- Duplicate UpdateID resolution (last write wins, in name order)
- Processing order, name filtering and parallel determinism
- Abort handling and progress callback isolation
"""

import sys
import tempfile
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_fixtures import MemoryReader, localized_document, run_suite, update_entry, write_descriptor_tree

from scan_catalog.core.descriptor_parser import DescriptorKind
from scan_catalog.core.errors import DescriptorParseError, DescriptorReadError, RunAborted
from scan_catalog.core.update_join import (
    JoinContext,
    OutcomeStatus,
    build_result_collection,
    ordered_descriptor_names,
    process_descriptor,
)


def _as_plain(context):
    return {update_id: record.as_dict() for update_id, record in context.results.items()}


def test_single_update_with_kb():
    """One descriptor with a KB produces exactly one output record"""
    reader = MemoryReader({"1": update_entry("4567890", "AAAA-1111", title="Security Update")})
    context = build_result_collection(reader.names(), reader)

    assert _as_plain(context) == {
        "AAAA-1111": {
            "Title": "Security Update",
            "Description": "",
            "KBs": ["KB4567890"],
            "CVEs": [],
            "UpdateID": "AAAA-1111",
            "AdditionalInfoUrl": [],
        }
    }
    assert context.included == 1
    assert context.skipped == 0


def test_update_without_kb_is_skipped():
    reader = MemoryReader({"2": update_entry(None, "BBBB-2222", title="Driver")})
    context = build_result_collection(reader.names(), reader)

    assert context.results == {}
    assert context.skipped == 1
    assert context.processed == 1


def test_skip_does_not_read_other_descriptors():
    """Identity and localized descriptors are never read for skipped names"""
    entries = {"2": {DescriptorKind.EXTENDED: "<ExtendedProperties />"}}
    reader = MemoryReader(entries)
    outcome = process_descriptor("2", reader)

    assert outcome.status is OutcomeStatus.SKIPPED
    assert reader.reads == [(DescriptorKind.EXTENDED, "2")]


def test_missing_localized_is_fatal():
    entry = update_entry("123", "CCCC-3333")
    del entry[DescriptorKind.LOCALIZED]
    reader = MemoryReader({"3": entry})

    try:
        build_result_collection(reader.names(), reader)
    except DescriptorReadError as e:
        assert e.descriptor_name == "3"
        assert e.kind is DescriptorKind.LOCALIZED
    else:
        raise AssertionError("Expected DescriptorReadError for missing localized descriptor")


def test_malformed_extended_is_fatal():
    reader = MemoryReader({
        "1": update_entry("100", "AAAA-1111"),
        "2": {DescriptorKind.EXTENDED: "<ExtendedProperties><KBArticleID>5</ExtendedProperties>"},
    })

    try:
        build_result_collection(reader.names(), reader)
    except DescriptorParseError as e:
        assert e.descriptor_name == "2"
    else:
        raise AssertionError("Expected DescriptorParseError for malformed descriptor")


def test_failure_outcome_is_explicit():
    entry = update_entry("123", "CCCC-3333")
    entry[DescriptorKind.IDENTITY] = '<Properties UpdateType="Software" />'
    outcome = process_descriptor("7", MemoryReader({"7": entry}))

    assert outcome.status is OutcomeStatus.FAILED
    assert isinstance(outcome.error, DescriptorParseError)
    assert outcome.error.descriptor_name == "7"


def test_undecodable_descriptor_is_a_failed_outcome():
    entry = update_entry("123", "CCCC-3333")

    def reader(kind, name):
        if kind is DescriptorKind.LOCALIZED:
            return b"<LocalizedProperties><Title>\xc3\x28</Title></LocalizedProperties>"
        return entry[kind].encode("utf-8")

    outcome = process_descriptor("8", reader)

    assert outcome.status is OutcomeStatus.FAILED
    assert isinstance(outcome.error, DescriptorParseError)
    assert outcome.error.descriptor_name == "8"
    assert outcome.error.kind is DescriptorKind.LOCALIZED


def test_duplicate_update_id_last_write_wins():
    """Later names in numeric order replace earlier records with the same UpdateID"""
    reader = MemoryReader({
        "10": update_entry("222", "DUPE-0001", title="Second"),
        "9": update_entry("111", "DUPE-0001", title="First"),
    })
    context = build_result_collection(reader.names(), reader)

    assert list(context.results) == ["DUPE-0001"]
    assert context.results["DUPE-0001"].title == "Second"
    assert context.results["DUPE-0001"].kbs == ["KB222"]
    assert context.collisions == 1


def test_numeric_name_ordering():
    names = ["10", "2", "b", "1", "a", "100"]

    assert ordered_descriptor_names(names) == ["1", "2", "10", "100", "a", "b"]


def test_name_filter_restricts_processing():
    reader = MemoryReader({
        "1": update_entry("100", "AAAA-1111"),
        "2": update_entry("200", "BBBB-2222"),
        "3": update_entry("300", "CCCC-3333"),
    })
    context = build_result_collection(reader.names(), reader, name_filter={"1", "3"})

    assert sorted(context.results) == ["AAAA-1111", "CCCC-3333"]
    assert all(name != "2" for _, name in reader.reads)


def test_more_info_urls_and_description():
    reader = MemoryReader({
        "5": update_entry("555", "EEEE-5555", title="Cumulative Update", description="Fixes issues",
                          urls=["http://support.microsoft.com/kb/555"]),
    })
    record = build_result_collection(reader.names(), reader).results["EEEE-5555"]

    assert record.description == "Fixes issues"
    assert record.additional_info_urls == ["http://support.microsoft.com/kb/555"]
    assert record.cves == []


def test_parallel_matches_sequential():
    entries = {}
    for i in range(1, 61):
        kb = str(4000000 + i) if i % 3 else None
        # Every tenth name reuses an earlier UpdateID
        update_id = f"ID-{i % 10:04d}" if i % 10 == 0 else f"ID-{i:04d}"
        entries[str(i)] = update_entry(kb, update_id, title=f"Update {i}")

    sequential = build_result_collection(list(entries), MemoryReader(entries))
    parallel = build_result_collection(list(entries), MemoryReader(entries), workers=4)

    assert _as_plain(sequential) == _as_plain(parallel)
    assert sequential.skipped == parallel.skipped
    assert sequential.collisions == parallel.collisions


def test_parallel_reports_first_failure_in_name_order():
    entries = {str(i): update_entry(str(i), f"ID-{i}") for i in range(1, 21)}
    entries["5"][DescriptorKind.LOCALIZED] = "<LocalizedProperties>"
    entries["15"][DescriptorKind.LOCALIZED] = "<LocalizedProperties>"

    try:
        build_result_collection(list(entries), MemoryReader(entries), workers=4)
    except DescriptorParseError as e:
        assert e.descriptor_name == "5"
    else:
        raise AssertionError("Expected DescriptorParseError")


def test_abort_event_stops_join():
    abort_event = threading.Event()
    processed = []

    def progress(context, outcome):
        processed.append(outcome.descriptor_name)
        if len(processed) == 2:
            abort_event.set()

    entries = {str(i): update_entry(str(i), f"ID-{i}") for i in range(1, 6)}
    context = JoinContext(progress=progress, abort_event=abort_event)

    try:
        build_result_collection(list(entries), MemoryReader(entries), context=context)
    except RunAborted:
        assert processed == ["1", "2"]
    else:
        raise AssertionError("Expected RunAborted")


def test_progress_errors_are_ignored():
    def progress(context, outcome):
        raise RuntimeError("display went away")

    reader = MemoryReader({"1": update_entry("100", "AAAA-1111")})
    context = build_result_collection(reader.names(), reader, context=JoinContext(progress=progress))

    assert list(context.results) == ["AAAA-1111"]


def test_descriptor_tree_on_disk():
    with tempfile.TemporaryDirectory() as tmp:
        entries = {
            "1": update_entry("100", "AAAA-1111", title="English title"),
            "2": update_entry(None, "BBBB-2222"),
        }
        tree = write_descriptor_tree(tmp, entries)
        (Path(tmp) / "l" / "de").mkdir()
        (Path(tmp) / "l" / "de" / "1").write_text(localized_document("Deutscher Titel", language="de"),
                                                  encoding="utf-8")

        context = build_result_collection(tree.names(), tree.read)
        assert context.results["AAAA-1111"].title == "English title"
        assert tree.missing_directories() == []

        tree.language = "de"
        context = build_result_collection(tree.names(), tree.read)
        assert context.results["AAAA-1111"].title == "Deutscher Titel"


def test_report_contains_counters():
    reader = MemoryReader({
        "1": update_entry("100", "AAAA-1111"),
        "2": update_entry(None, "BBBB-2222"),
    })
    report = build_result_collection(reader.names(), reader).report()

    assert "CATALOG JOIN SUMMARY" in report
    assert "Included updates:          1" in report
    assert "Skipped (no KB article):   1" in report


def run_all_tests():
    tests = [
        test_single_update_with_kb,
        test_update_without_kb_is_skipped,
        test_skip_does_not_read_other_descriptors,
        test_missing_localized_is_fatal,
        test_malformed_extended_is_fatal,
        test_failure_outcome_is_explicit,
        test_undecodable_descriptor_is_a_failed_outcome,
        test_duplicate_update_id_last_write_wins,
        test_numeric_name_ordering,
        test_name_filter_restricts_processing,
        test_more_info_urls_and_description,
        test_parallel_matches_sequential,
        test_parallel_reports_first_failure_in_name_order,
        test_abort_event_stops_join,
        test_progress_errors_are_ignored,
        test_descriptor_tree_on_disk,
        test_report_contains_counters,
    ]
    return run_suite("Update Join", tests)


if __name__ == '__main__':
    sys.exit(run_all_tests())
