"""
Inline tag codec for clip messages.

A clip message's text is the only place entrance and volume metadata is
persisted.  The grammar is ``type:value;`` repeated, e.g.::

    e:102938475;v:180;

``e`` marks the clip as a user's entrance (several users may share a clip),
``v`` carries the clip volume.  Unknown types are kept as-is so that a
decode/encode cycle never loses data.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, NamedTuple, Optional

from utils.errors import MalformedTag

logger = logging.getLogger(__name__)

TAG_SEPARATOR = ";"
KV_SEPARATOR = ":"


class Tag(NamedTuple):
    type: str
    value: str

    def __str__(self) -> str:
        return f"{self.type}{KV_SEPARATOR}{self.value}{TAG_SEPARATOR}"


def _check(tag: Tag) -> None:
    if not tag.type:
        raise MalformedTag(str(tag), "empty tag type")
    for part in (tag.type, tag.value):
        if KV_SEPARATOR in part or TAG_SEPARATOR in part:
            raise MalformedTag(str(tag), "type and value may not contain ':' or ';'")


def encode(tags: Iterable[Tag]) -> str:
    """Serialise *tags* in order."""
    out: List[str] = []
    for tag in tags:
        _check(tag)
        out.append(str(tag))
    return "".join(out)


def decode(text: Optional[str], *, strict: bool = True) -> List[Tag]:
    """Parse tag text.

    Segments are split on the first ``:`` only.  A segment without a ``:``
    raises :class:`MalformedTag` when *strict*; otherwise it is logged and
    skipped so the remaining tags still load.
    """
    tags: List[Tag] = []
    if not text:
        return tags

    for segment in text.split(TAG_SEPARATOR):
        if not segment:
            continue
        if KV_SEPARATOR not in segment:
            if strict:
                raise MalformedTag(segment)
            logger.warning("Skipping malformed tag segment %r", segment)
            continue
        tag_type, value = segment.split(KV_SEPARATOR, 1)
        tags.append(Tag(tag_type, value))
    return tags


# ── Mutation helpers ─────────────────────────────────────────────────


def remove_tags(tags: Iterable[Tag], tag_type: str, value: Optional[str] = None) -> List[Tag]:
    """Drop every tag of *tag_type* (or only those equal to *value*)."""
    return [
        t for t in tags
        if not (t.type == tag_type and (value is None or t.value == value))
    ]


def upsert_tag(tags: Iterable[Tag], tag_type: str, value: str) -> List[Tag]:
    """Replace all tags of *tag_type* with a single one appended at the end."""
    updated = remove_tags(tags, tag_type)
    updated.append(Tag(tag_type, value))
    return updated


def values_of(tags: Iterable[Tag], tag_type: str) -> List[str]:
    return [t.value for t in tags if t.type == tag_type]


def parse_volume(value: str) -> int:
    """Parse a ``v`` tag value."""
    try:
        return int(value.strip())
    except ValueError:
        raise MalformedTag(f"v{KV_SEPARATOR}{value}", "volume is not an integer") from None
