"""Tag-based routing of tasks to remote collections."""

from typing import Iterable, List, Optional

from ..core.models import RoutingRule, SyncSettings
from ..utils.text import normalize_tag


class TagRouter:
    """Holds ``tag -> collection`` rules; the first matching rule wins."""

    def __init__(self, rules: Iterable[RoutingRule] = ()):
        self.rules: List[RoutingRule] = [rule for rule in rules if rule.tag and rule.collection_id]

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "TagRouter":
        return cls(settings.tag_routes)

    def resolve(self, tag: Optional[str]) -> Optional[RoutingRule]:
        normalized = normalize_tag(tag)
        if not normalized:
            return None
        for rule in self.rules:
            if rule.tag == normalized:
                return rule
        return None

    def tag_for_collection(self, collection_id: str) -> Optional[str]:
        for rule in self.rules:
            if rule.collection_id == collection_id:
                return rule.tag
        return None

    def tag_names(self) -> List[str]:
        seen = []
        for rule in self.rules:
            if rule.tag not in seen:
                seen.append(rule.tag)
        return seen

    def __bool__(self) -> bool:
        return bool(self.rules)
