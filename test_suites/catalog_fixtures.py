#!/usr/bin/env python3
"""
Shared fixtures for the Scan Catalog test suites.

Builds descriptor fragments and expanded catalog trees shaped like the
contents of the wsusscn2.cab package cabinets, plus the standard suite
runner that prints the TEST_RESULTS line parsed by run_all_tests.py.
"""

import sys
import traceback
from pathlib import Path
from typing import Dict, Iterable, Optional

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from scan_catalog.core.descriptor_parser import DescriptorKind
from scan_catalog.core.update_join import DescriptorTree


def extended_fragment(kb: Optional[str] = None, bulletin: str = "", support_url: str = "") -> str:
    """Extended-properties member: several top-level elements, no root"""
    parts = ['<ExtendedProperties DefaultPropertiesLanguage="en" '
             'Handler="http://schemas.microsoft.com/msus/2002/12/UpdateHandlers/CBS" />']
    if support_url:
        parts.append(f"<SupportUrl>{support_url}</SupportUrl>")
    if bulletin:
        parts.append(f"<SecurityBulletinID>{bulletin}</SecurityBulletinID>")
    if kb is not None:
        parts.append(f"<KBArticleID>{kb}</KBArticleID>")
    return "".join(parts)


def identity_fragment(update_id: str, revision: str = "200") -> str:
    """Identity member: UpdateIdentity followed by sibling elements"""
    return (f'<UpdateIdentity UpdateID="{update_id}" RevisionNumber="{revision}" />'
            '<Properties UpdateType="Software" />'
            '<Relationships />')


def localized_document(title: str = "", description: Optional[str] = None,
                       urls: Iterable[str] = (), language: str = "en") -> str:
    """Localized member: a single-root LocalizedProperties document"""
    parts = [f"<LocalizedProperties><Language>{language}</Language>"]
    if title:
        parts.append(f"<Title>{title}</Title>")
    if description is not None:
        parts.append(f"<Description>{description}</Description>")
    for url in urls:
        parts.append(f"<MoreInfoUrl>{url}</MoreInfoUrl>")
    parts.append("</LocalizedProperties>")
    return "".join(parts)


def update_entry(kb: Optional[str], update_id: str, title: str = "", description: Optional[str] = None,
                 urls: Iterable[str] = ()) -> Dict[DescriptorKind, str]:
    """Descriptor triple for one update"""
    return {
        DescriptorKind.EXTENDED: extended_fragment(kb),
        DescriptorKind.IDENTITY: identity_fragment(update_id),
        DescriptorKind.LOCALIZED: localized_document(title, description, urls),
    }


class MemoryReader:
    """In-memory file reader: (kind, name) -> bytes, FileNotFoundError when absent"""

    def __init__(self, entries: Dict[str, Dict[DescriptorKind, str]]):
        self.entries = entries
        self.reads = []

    def names(self):
        return list(self.entries)

    def __call__(self, kind: DescriptorKind, name: str) -> bytes:
        self.reads.append((kind, name))
        content = self.entries.get(name, {}).get(kind)
        if content is None:
            raise FileNotFoundError(f"No {kind.value} descriptor for {name}")
        return content.encode("utf-8")


def write_descriptor_tree(root, entries: Dict[str, Dict[DescriptorKind, str]], language: str = "en") -> DescriptorTree:
    """Write entries to disk as x/<name>, c/<name>, l/<language>/<name>"""
    tree = DescriptorTree(root, language=language)
    for kind in DescriptorKind:
        tree.directory(kind).mkdir(parents=True, exist_ok=True)
    for name, triple in entries.items():
        for kind, content in triple.items():
            if content is not None:
                (tree.directory(kind) / name).write_bytes(content.encode("utf-8"))
    return tree


def run_suite(suite_name: str, tests) -> int:
    """Run test functions, print the standard TEST_RESULTS line, return an exit code"""
    print("=" * 80)
    print(suite_name.upper())
    print("=" * 80)
    print()

    passed = 0
    for test in tests:
        try:
            test()
            passed += 1
            print(f"PASSED: {test.__name__}")
        except Exception as e:
            print(f"FAILED: {test.__name__}: {type(e).__name__}: {e}")
            traceback.print_exc()
        print()

    total = len(tests)
    print("=" * 80, flush=True)
    print(f"TEST_RESULTS: PASSED={passed} TOTAL={total} SUITE=\"{suite_name}\"", flush=True)
    print("=" * 80, flush=True)
    return 0 if passed == total else 1
