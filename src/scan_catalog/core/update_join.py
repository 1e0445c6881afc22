#!/usr/bin/env python3
"""
Update Join Engine

Walks the descriptor file names of an expanded catalog, parses the
extended-properties / identity / localized triple for each name, applies the
KB inclusion policy and merges the triple into one UpdateRecord keyed by
UpdateID.

Processing of each name yields an explicit UpdateOutcome (included, skipped
or failed). The first failed outcome, in name order, aborts the whole run.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from .descriptor_parser import (
    DescriptorKind,
    ExtendedPropertiesDescriptor,
    IdentityDescriptor,
    LocalizedDescriptor,
    parse_extended_properties,
    parse_identity,
    parse_localized,
)
from .errors import DescriptorError, DescriptorReadError, RunAborted
from ..logging.workflow_logger import get_logger

logger = get_logger()

NO_KB_REASON = "no KB article"

DEFAULT_DESCRIPTOR_DIRS = {
    "extended": "x",
    "identity": "c",
    "localized": "l",
}

FileReader = Callable[[DescriptorKind, str], bytes]


@dataclass
class UpdateRecord:
    """One consolidated update, rendered with the output field names by as_dict()"""
    title: str
    description: str
    kbs: List[str]
    update_id: str
    additional_info_urls: List[str] = field(default_factory=list)
    cves: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "Title": self.title,
            "Description": self.description,
            "KBs": list(self.kbs),
            "CVEs": list(self.cves),
            "UpdateID": self.update_id,
            "AdditionalInfoUrl": list(self.additional_info_urls),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "UpdateRecord":
        return cls(
            title=data.get("Title", ""),
            description=data.get("Description", ""),
            kbs=list(data.get("KBs") or []),
            update_id=data.get("UpdateID", ""),
            additional_info_urls=list(data.get("AdditionalInfoUrl") or []),
            cves=list(data.get("CVEs") or []),
        )


class OutcomeStatus(Enum):
    INCLUDED = "included"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UpdateOutcome:
    """Result of processing one descriptor file name"""
    descriptor_name: str
    status: OutcomeStatus
    record: Optional[UpdateRecord] = None
    reason: str = ""
    error: Optional[DescriptorError] = None

    @classmethod
    def included(cls, descriptor_name: str, record: UpdateRecord) -> "UpdateOutcome":
        return cls(descriptor_name, OutcomeStatus.INCLUDED, record=record)

    @classmethod
    def skipped(cls, descriptor_name: str, reason: str) -> "UpdateOutcome":
        return cls(descriptor_name, OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, descriptor_name: str, error: DescriptorError) -> "UpdateOutcome":
        return cls(descriptor_name, OutcomeStatus.FAILED, error=error)


class JoinContext:
    """Run-wide state of one join pass: the result collection and its counters"""

    def __init__(self, progress: Optional[Callable[["JoinContext", UpdateOutcome], None]] = None,
                 abort_event: Optional[threading.Event] = None):
        self.results: Dict[str, UpdateRecord] = {}
        self.total = 0
        self.processed = 0
        self.included = 0
        self.skipped = 0
        self.collisions = 0
        self.start_time = time.monotonic()
        self.progress = progress
        self.abort_event = abort_event or threading.Event()

    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def apply(self, outcome: UpdateOutcome):
        """Fold one non-failed outcome into the result collection"""
        self.processed += 1
        if outcome.status is OutcomeStatus.SKIPPED:
            self.skipped += 1
            logger.debug(f"Skipping descriptor {outcome.descriptor_name}: {outcome.reason}", group="JOIN")
            return

        record = outcome.record
        if record.update_id in self.results:
            # Last write wins; the earlier record is replaced wholesale
            self.collisions += 1
            logger.warning(f"Duplicate UpdateID {record.update_id} from descriptor {outcome.descriptor_name} "
                           f"replaces the earlier record", group="JOIN")
        self.results[record.update_id] = record
        self.included += 1

    def notify_progress(self, outcome: UpdateOutcome):
        if self.progress is None:
            return
        try:
            self.progress(self, outcome)
        except Exception as e:
            logger.debug(f"Progress reporting failed: {e}", group="JOIN")

    def report(self) -> str:
        """Generate human-readable statistics report"""
        elapsed = self.elapsed()
        minutes = int(elapsed // 60)
        seconds = int(elapsed % 60)

        lines = [
            "\n" + "=" * 80,
            "CATALOG JOIN SUMMARY",
            "=" * 80,
            f"Descriptor names:          {self.total:,}",
            f"Processed:                 {self.processed:,}",
            f"Included updates:          {self.included:,}",
            f"Skipped (no KB article):   {self.skipped:,}",
            f"Duplicate UpdateIDs:       {self.collisions:,}",
            f"Output records:            {len(self.results):,}",
            f"Elapsed time:              {minutes}m {seconds}s",
            "=" * 80 + "\n",
        ]
        return "\n".join(lines)


class DescriptorTree:
    """Filesystem view of an expanded catalog: x/<name>, c/<name>, l/<language>/<name>"""

    def __init__(self, root, language: str = "en", descriptor_dirs: Optional[Dict[str, str]] = None):
        self.root = Path(root)
        self.language = language
        self.descriptor_dirs = dict(DEFAULT_DESCRIPTOR_DIRS)
        if descriptor_dirs:
            self.descriptor_dirs.update(descriptor_dirs)

    def directory(self, kind: DescriptorKind) -> Path:
        path = self.root / self.descriptor_dirs[kind.value]
        if kind is DescriptorKind.LOCALIZED:
            path = path / self.language
        return path

    def missing_directories(self) -> List[Path]:
        return [self.directory(kind) for kind in DescriptorKind if not self.directory(kind).is_dir()]

    def names(self) -> List[str]:
        """Descriptor file names, taken from the extended-properties subtree"""
        return [entry.name for entry in self.directory(DescriptorKind.EXTENDED).iterdir() if entry.is_file()]

    def read(self, kind: DescriptorKind, name: str) -> bytes:
        return (self.directory(kind) / name).read_bytes()


def descriptor_sort_key(name: str):
    """Ascending numeric order; non-numeric names sort after, lexicographically"""
    if name.isdigit():
        return (0, int(name), name)
    return (1, 0, name)


def ordered_descriptor_names(descriptor_names: Iterable[str], name_filter: Optional[Set[str]] = None) -> List[str]:
    names = descriptor_names if name_filter is None else (n for n in descriptor_names if n in name_filter)
    return sorted(names, key=descriptor_sort_key)


def merge_descriptors(extended: ExtendedPropertiesDescriptor, identity: IdentityDescriptor,
                      localized: LocalizedDescriptor) -> UpdateRecord:
    logger.debug(f"Merging update {identity.update_id} revision {identity.revision_number}: "
                 f"bulletin={extended.security_bulletin_id or '-'}, support_url={extended.support_url or '-'}, "
                 f"language={localized.language or '-'}", group="PARSE")
    # One article id per descriptor is used; multi-value fields are not split
    return UpdateRecord(
        title=localized.title,
        description=localized.description,
        kbs=[f"KB{extended.kb_article_ids[0]}"],
        update_id=identity.update_id,
        additional_info_urls=list(localized.more_info_urls),
        cves=[],
    )


def _read(file_reader: FileReader, kind: DescriptorKind, name: str) -> bytes:
    try:
        return file_reader(kind, name)
    except OSError as e:
        raise DescriptorReadError(f"Cannot read {kind.value} descriptor {name}: {e}",
                                  kind=kind, descriptor_name=name) from e


def process_descriptor(name: str, file_reader: FileReader) -> UpdateOutcome:
    """
    Read, parse and merge the descriptor triple for one file name.

    The identity and localized descriptors are only read when the extended
    properties carry a KB article.
    """
    try:
        extended = parse_extended_properties(_read(file_reader, DescriptorKind.EXTENDED, name))
        if not extended.has_kb_article:
            return UpdateOutcome.skipped(name, NO_KB_REASON)

        identity = parse_identity(_read(file_reader, DescriptorKind.IDENTITY, name))
        localized = parse_localized(_read(file_reader, DescriptorKind.LOCALIZED, name))
    except DescriptorError as e:
        if e.descriptor_name is None:
            e.descriptor_name = name
        logger.debug(f"Descriptor {name} failed: {e}", group="PARSE")
        return UpdateOutcome.failed(name, e)

    return UpdateOutcome.included(name, merge_descriptors(extended, identity, localized))


def _check_abort(context: JoinContext):
    if context.abort_event.is_set():
        raise RunAborted(f"Join aborted after {context.processed} of {context.total} descriptors")


def build_result_collection(descriptor_names: Iterable[str], file_reader: FileReader,
                            name_filter: Optional[Set[str]] = None,
                            context: Optional[JoinContext] = None,
                            workers: int = 1) -> JoinContext:
    """
    Build the UpdateID -> UpdateRecord collection for the given descriptor names.

    Args:
        descriptor_names: Descriptor file names (any order; processed ascending numeric)
        file_reader: Callable (kind, name) -> raw bytes of that descriptor
        name_filter: Optional set restricting which names are processed
        context: JoinContext to populate (a fresh one when omitted)
        workers: Parser threads; results are still applied in name order

    Returns:
        The populated JoinContext (results in context.results)

    Raises:
        DescriptorParseError / DescriptorReadError: First failure in name order
        RunAborted: If context.abort_event was set during the pass
    """
    if context is None:
        context = JoinContext()

    names = ordered_descriptor_names(descriptor_names, name_filter)
    context.total += len(names)

    executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
    try:
        futures = [executor.submit(process_descriptor, name, file_reader) for name in names] if executor else None

        for index, name in enumerate(names):
            _check_abort(context)
            outcome = futures[index].result() if executor else process_descriptor(name, file_reader)

            if outcome.status is OutcomeStatus.FAILED:
                raise outcome.error

            context.apply(outcome)
            context.notify_progress(outcome)
    finally:
        if executor:
            executor.shutdown(wait=True, cancel_futures=True)

    return context
