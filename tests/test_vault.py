"""
Tests for the document store and front matter parsing.
"""

import pytest

from mtd_sync.core.exceptions import DocumentError
from mtd_sync.markdown.vault import DocumentStore, parse_front_matter
from tests.fakes import write_doc


class TestDocumentStore:

    def test_read_write_and_mtime(self, vault):
        store = DocumentStore(str(vault))
        store.write("Sub/Tasks.md", "- [ ] one\n")
        assert store.exists("Sub/Tasks.md")
        assert store.read("Sub/Tasks.md") == "- [ ] one\n"
        assert store.mtime_ms("Sub/Tasks.md") > 0
        assert store.mtime_ms("Missing.md") == 0

    def test_missing_document_raises(self, vault):
        with pytest.raises(DocumentError):
            DocumentStore(str(vault)).read("Missing.md")

    def test_paths_cannot_escape_root(self, vault):
        store = DocumentStore(str(vault))
        with pytest.raises(DocumentError):
            store.read("../outside.md")
        with pytest.raises(DocumentError):
            store.relative_path("/definitely/not/in/vault.md")

    def test_relative_path(self, vault):
        store = DocumentStore(str(vault))
        assert store.relative_path(str(vault / "a" / "b.md")) == "a/b.md"
        assert store.relative_path("a/b.md") == "a/b.md"

    def test_list_documents_skips_hidden(self, vault):
        write_doc(vault, "B.md", "")
        write_doc(vault, "a/A.md", "")
        write_doc(vault, ".obsidian/config.md", "")
        write_doc(vault, "notes.txt", "")
        assert DocumentStore(str(vault)).list_documents() == ["B.md", "a/A.md"]

    def test_annotations(self, vault):
        write_doc(vault, "List.md", "---\nmtd-lists:\n  - Work\n  - Home\n---\nbody\n")
        write_doc(vault, "Comma.md", "---\nmtd-lists: Work, Home\n---\n")
        write_doc(vault, "Plain.md", "no front matter\n")
        store = DocumentStore(str(vault))
        assert store.read_annotation("List.md") == ["Work", "Home"]
        assert store.read_annotation("Comma.md") == ["Work", "Home"]
        assert store.read_annotation("Plain.md") == []
        assert store.find_annotated() == ["Comma.md", "List.md"]


class TestFrontMatter:

    def test_invalid_yaml_is_ignored(self):
        assert parse_front_matter("---\n: [unclosed\n---\n") == {}

    def test_non_mapping_is_ignored(self):
        assert parse_front_matter("---\n- a\n- b\n---\n") == {}

    def test_unterminated_block(self):
        assert parse_front_matter("---\nkey: value\n") == {}

    def test_mapping(self):
        assert parse_front_matter("---\nkey: value\n...\nrest") == {"key": "value"}
