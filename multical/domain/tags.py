"""Resource tag parsing and capacity marker titles."""

from __future__ import annotations

import re
from typing import Optional

from multical.domain.models import ResourceTag


_OCCUPANCY_SUFFIX = re.compile(r"^(.*)\[(\d+)\]$")


def parse_resource_tag(raw: str) -> ResourceTag:
    """Split ``Base[2]`` into ``ResourceTag("Base", 2)``; untagged bases keep ``None``."""
    text = raw.strip()
    match = _OCCUPANCY_SUFFIX.match(text)
    if match is None:
        return ResourceTag(base=text)
    return ResourceTag(base=match.group(1).strip(), requested=int(match.group(2)))


def enumerate_marker_title(base: str, remaining: int) -> str:
    """Render ``Base[3], Base[2], Base[1]`` so each free slot is matchable on its own.

    A drained marker keeps ``Base[0]`` as its title.
    """
    if remaining <= 0:
        return f"{base}[0]"
    return ", ".join(f"{base}[{count}]" for count in range(remaining, 0, -1))


def marker_base_from_title(title: str) -> Optional[str]:
    """Return the base of a marker title, or None when the title is not a marker."""
    first = title.split(",", 1)[0]
    tag = parse_resource_tag(first)
    if not tag.is_occupancy_tagged or not tag.base:
        return None
    return tag.base
