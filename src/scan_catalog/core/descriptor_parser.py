#!/usr/bin/env python3
"""
Descriptor Parser

Parses the three per-update descriptor kinds stored in the expanded catalog:

- Extended properties (x/<name>): KB article numbers, bulletin id, support url
- Identity (c/<name>): the update's canonical UpdateID
- Localized properties (l/<language>/<name>): title, description, more-info urls

Extended-properties and identity members are fragments that may hold zero,
one or several top-level elements, so they are wrapped in a synthetic root
element before parsing. Localized members are single-root documents and are
parsed as-is; wrapping them would hide genuine malformed input.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union
from xml.etree import ElementTree as ET

from .errors import DescriptorParseError

SYNTHETIC_ROOT = "descriptor"

_XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>', re.IGNORECASE)

RawContent = Union[bytes, str]


class DescriptorKind(Enum):
    """Descriptor kinds and the config key of their catalog subtree"""
    EXTENDED = "extended"
    IDENTITY = "identity"
    LOCALIZED = "localized"


@dataclass
class ExtendedPropertiesDescriptor:
    """Extended properties of one update"""
    kb_article_ids: List[str] = field(default_factory=list)
    security_bulletin_id: str = ""
    support_url: str = ""

    @property
    def has_kb_article(self) -> bool:
        return bool(self.kb_article_ids)


@dataclass
class IdentityDescriptor:
    """Identity of one update"""
    update_id: str
    revision_number: Optional[str] = None


@dataclass
class LocalizedDescriptor:
    """Localized properties of one update for a single language"""
    title: str = ""
    description: str = ""
    more_info_urls: List[str] = field(default_factory=list)
    language: str = ""


def _decode(raw: RawContent, kind: DescriptorKind) -> str:
    """Decode raw member content, honoring UTF-8 and UTF-16 byte order marks"""
    try:
        if isinstance(raw, str):
            text = raw
        elif raw.startswith((b'\xff\xfe', b'\xfe\xff')):
            text = raw.decode('utf-16')
        else:
            text = raw.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise DescriptorParseError(f"Undecodable {kind.value} descriptor: {e}", kind=kind) from e
    return text.lstrip('\ufeff')


def _normalize(raw: RawContent, kind: DescriptorKind) -> str:
    """Decode content and drop a leading XML declaration"""
    return _XML_DECLARATION.sub('', _decode(raw, kind), count=1)


def wrap_fragment(raw: RawContent, kind: DescriptorKind = DescriptorKind.EXTENDED) -> str:
    """
    Wrap a multi-rooted descriptor fragment in a synthetic root element.

    Extended-properties and identity members may contain zero or several
    top-level elements, which a single-document parser would reject.
    """
    return f"<{SYNTHETIC_ROOT}>{_normalize(raw, kind)}</{SYNTHETIC_ROOT}>"


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1] if isinstance(tag, str) else ""


def _iter_named(root: ET.Element, name: str):
    for element in root.iter():
        if _local_name(element.tag) == name:
            yield element


def _first_text(root: ET.Element, name: str) -> str:
    for element in _iter_named(root, name):
        return (element.text or "").strip()
    return ""


def _parse_document(text: str, kind: DescriptorKind) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise DescriptorParseError(f"Malformed {kind.value} descriptor: {e}", kind=kind) from e


def parse_extended_properties(raw: RawContent) -> ExtendedPropertiesDescriptor:
    """
    Parse an extended-properties fragment.

    A fragment with no KBArticleID element is valid and yields an empty
    kb_article_ids list.

    Raises:
        DescriptorParseError: If the wrapped fragment is not well-formed
    """
    root = _parse_document(wrap_fragment(raw, DescriptorKind.EXTENDED), DescriptorKind.EXTENDED)

    kb_article_ids = []
    for element in _iter_named(root, "KBArticleID"):
        value = (element.text or "").strip()
        if value:
            kb_article_ids.append(value)

    return ExtendedPropertiesDescriptor(
        kb_article_ids=kb_article_ids,
        security_bulletin_id=_first_text(root, "SecurityBulletinID"),
        support_url=_first_text(root, "SupportUrl")
    )


def parse_identity(raw: RawContent) -> IdentityDescriptor:
    """
    Parse an identity fragment.

    Raises:
        DescriptorParseError: If the fragment is malformed or carries no UpdateID
    """
    root = _parse_document(wrap_fragment(raw, DescriptorKind.IDENTITY), DescriptorKind.IDENTITY)

    for element in _iter_named(root, "UpdateIdentity"):
        update_id = (element.get("UpdateID") or "").strip()
        if update_id:
            return IdentityDescriptor(
                update_id=update_id,
                revision_number=element.get("RevisionNumber")
            )

    raise DescriptorParseError("Identity descriptor has no UpdateIdentity/@UpdateID",
                               kind=DescriptorKind.IDENTITY)


def parse_localized(raw: RawContent) -> LocalizedDescriptor:
    """
    Parse a localized-properties document (single root, never wrapped).

    Missing Title/Description default to "" and missing MoreInfoUrl entries to [].

    Raises:
        DescriptorParseError: If the document is not well-formed
    """
    root = _parse_document(_normalize(raw, DescriptorKind.LOCALIZED), DescriptorKind.LOCALIZED)

    urls = []
    for element in _iter_named(root, "MoreInfoUrl"):
        value = (element.text or "").strip()
        if value:
            urls.append(value)

    return LocalizedDescriptor(
        title=_first_text(root, "Title"),
        description=_first_text(root, "Description"),
        more_info_urls=urls,
        language=_first_text(root, "Language")
    )
