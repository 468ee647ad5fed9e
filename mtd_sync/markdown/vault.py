"""
Document store backed by a directory of markdown files (an Obsidian vault).

Documents are addressed by vault-relative POSIX paths such as
``Projects/Tasks.md``; these are the paths used as mapping keys.
"""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import yaml

from ..core.exceptions import DocumentError
from ..utils.io import atomic_write


LIST_ANNOTATION_KEY = "mtd-lists"
MARKDOWN_SUFFIX = ".md"


class DocumentStore:
    """Reads, atomically writes and enumerates task documents under a root."""

    def __init__(self, root: str, logger: Optional[logging.Logger] = None):
        self.root = Path(os.path.expanduser(root)).resolve()
        self.logger = logger or logging.getLogger(__name__)

    def _resolve(self, document_path: str) -> Path:
        relative = PurePosixPath(document_path.replace(os.sep, '/'))
        if relative.is_absolute() or '..' in relative.parts:
            raise DocumentError(f"Document path escapes the vault: {document_path}")
        return self.root.joinpath(*relative.parts)

    def relative_path(self, path: str) -> str:
        """Vault-relative POSIX path for an absolute or relative filesystem path."""
        candidate = Path(os.path.expanduser(path))
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self.root)
            except ValueError as exc:
                raise DocumentError(f"{path} is outside the vault {self.root}") from exc
        return candidate.as_posix()

    def exists(self, document_path: str) -> bool:
        return self._resolve(document_path).is_file()

    def read(self, document_path: str) -> str:
        path = self._resolve(document_path)
        try:
            with path.open('r', encoding='utf-8', newline='') as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise DocumentError(f"Document not found: {document_path}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentError(f"Cannot read {document_path}: {exc}") from exc

    def write(self, document_path: str, text: str) -> None:
        """Replace the full text of a document atomically."""
        if not atomic_write(str(self._resolve(document_path)), text):
            raise DocumentError(f"Cannot write {document_path}")
        self.logger.debug(f"Wrote {document_path} ({len(text)} chars)")

    def mtime_ms(self, document_path: str) -> int:
        try:
            return int(self._resolve(document_path).stat().st_mtime * 1000)
        except OSError:
            return 0

    def list_documents(self) -> List[str]:
        """All markdown documents, skipping hidden directories such as ``.obsidian``."""
        documents = []
        for root, dirs, files in os.walk(self.root):
            dirs[:] = sorted(d for d in dirs if not d.startswith('.'))
            for name in sorted(files):
                if name.endswith(MARKDOWN_SUFFIX) and not name.startswith('.'):
                    full = Path(root) / name
                    documents.append(full.relative_to(self.root).as_posix())
        return documents

    def front_matter(self, document_path: str) -> Dict[str, Any]:
        """Parse the leading YAML front matter block, or return an empty dict."""
        return parse_front_matter(self.read(document_path), self.logger, document_path)

    def read_annotation(self, document_path: str, key: str = LIST_ANNOTATION_KEY) -> List[str]:
        """Values of a front matter key, normalised to a list of strings."""
        value = self.front_matter(document_path).get(key)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        text = str(value).strip()
        if not text:
            return []
        return [part.strip() for part in text.split(',') if part.strip()]

    def find_annotated(self, key: str = LIST_ANNOTATION_KEY) -> List[str]:
        """Documents whose front matter carries ``key``."""
        found = []
        for document_path in self.list_documents():
            try:
                if self.read_annotation(document_path, key):
                    found.append(document_path)
            except DocumentError as exc:
                self.logger.warning(f"Skipping {document_path}: {exc}")
        return found


def parse_front_matter(text: str, logger: Optional[logging.Logger] = None, source: str = "") -> Dict[str, Any]:
    lines = text.replace('\r\n', '\n').split('\n')
    if not lines or lines[0].strip() != '---':
        return {}
    for index in range(1, len(lines)):
        if lines[index].strip() in ('---', '...'):
            block = '\n'.join(lines[1:index])
            try:
                data = yaml.safe_load(block)
            except yaml.YAMLError as exc:
                (logger or logging.getLogger(__name__)).warning(f"Invalid front matter in {source or 'document'}: {exc}")
                return {}
            return data if isinstance(data, dict) else {}
    return {}
