"""Maps resource tags and group titles to their owning calendar."""

from __future__ import annotations

from typing import Optional

from multical.domain.models import KeywordResolution
from multical.domain.rules import SchedulingRules
from multical.utils.config import Settings, get_settings
from multical.utils.logger import get_logger


logger = get_logger(__name__)


class KeywordResolver:
    """Walks the sub-resource tree, then the category tree, to a calendar id.

    Lookups never raise: a key whose chain does not end in a calendar id
    resolves to ``calendar_id=None`` and callers skip it.
    """

    def __init__(self, rules: SchedulingRules, settings: Optional[Settings] = None) -> None:
        self._rules = rules
        self._settings = settings or get_settings()

    def is_group_sentinel(self, tag: str) -> bool:
        return tag.strip().upper() == self._settings.group_sentinel.upper()

    def resolve(self, tag: str, context_title: str = "") -> KeywordResolution:
        key = context_title if self.is_group_sentinel(tag) else tag.strip()

        ancestors: list[str] = []
        seen = {key}
        while key in self._rules.keyword_tree:
            key = self._rules.keyword_tree[key]
            if key in seen:
                logger.warning("Keyword tree cycle detected | key=%s", key)
                break
            ancestors.append(key)
            seen.add(key)

        seen = {key}
        while key in self._rules.calendar_tree:
            key = self._rules.calendar_tree[key]
            if key in seen:
                logger.warning("Calendar tree cycle detected | key=%s", key)
                break
            seen.add(key)

        if not key.startswith(self._settings.calendar_id_prefix):
            return KeywordResolution(calendar_id=None, ancestors=tuple(ancestors))
        return KeywordResolution(calendar_id=key, ancestors=tuple(ancestors))
