"""
Line edits collected during a pass and applied in one go.

Edits address lines by their index in the document as it was parsed, so
they can be recorded in any order without shifting each other.
"""

from typing import Dict, List, Set


class DocumentPatch:
    """Accumulates replacements, removals and insertions for one document."""

    def __init__(self) -> None:
        self.replacements: Dict[int, str] = {}
        self.removals: Set[int] = set()
        self.insertions: Dict[int, List[str]] = {}
        self.appended: List[str] = []

    def replace(self, index: int, line: str) -> None:
        self.replacements[index] = line

    def remove(self, index: int) -> None:
        self.removals.add(index)
        self.replacements.pop(index, None)

    def insert_after(self, index: int, lines: List[str]) -> None:
        """Insert ``lines`` after original line ``index`` (-1 means at the top)."""
        self.insertions.setdefault(index, []).extend(lines)

    def append_section(self, heading: str, lines: List[str], level: int = 2) -> None:
        if self.appended and self.appended[-1] != "":
            self.appended.append("")
        self.appended.append(f"{'#' * level} {heading}")
        self.appended.extend(lines)

    def apply(self, lines: List[str]) -> List[str]:
        result: List[str] = list(self.insertions.get(-1, []))
        for index, line in enumerate(lines):
            if index not in self.removals:
                result.append(self.replacements.get(index, line))
            result.extend(self.insertions.get(index, []))

        if self.appended:
            if result and result[-1].strip():
                result.append("")
            result.extend(self.appended)
        return result
