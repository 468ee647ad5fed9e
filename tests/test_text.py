"""
Tests for title canonicalization and content hashing.
"""

from mtd_sync.utils.text import (
    canonicalize_title,
    extract_due_date,
    hash_checklist,
    hash_task,
    normalize_tag,
    sanitize_title_for_remote,
)


class TestCanonicalize:

    def test_strips_markers_tags_and_metadata(self):
        title = "Water plants 🔁 every week ⏫ ➕ 2024-01-01 #home <!-- mtd:mtd_abcd1234 -->"
        assert canonicalize_title(title, ["#home"]) == "Water plants"

    def test_whitespace_is_collapsed(self):
        assert canonicalize_title("  a   b \t c ") == "a b c"

    def test_other_tags_survive(self):
        assert canonicalize_title("Call #family", ["#work"]) == "Call #family"

    def test_sanitize_for_remote(self):
        assert sanitize_title_for_remote("Pay rent 📅 2024-02-01 #home ^mtd_abc12345", ["#home"]) == "Pay rent"


class TestHashes:

    def test_task_hash_layout(self):
        assert hash_task("Buy milk", False, None) == "0|Buy milk|"
        assert hash_task("Buy milk", True, "2024-01-01") == "1|Buy milk|2024-01-01"

    def test_hash_ignores_volatile_metadata(self):
        local = hash_task("Report 🔼 #work", False, "2024-05-01", ["#work"])
        remote = hash_task("Report", False, "2024-05-01", ["#work"])
        assert local == remote

    def test_hash_detects_real_changes(self):
        assert hash_task("Report", False, None) != hash_task("Report v2", False, None)
        assert hash_task("Report", False, None) != hash_task("Report", True, None)
        assert hash_task("Report", False, None) != hash_task("Report", False, "2024-01-01")

    def test_checklist_hash(self):
        assert hash_checklist("Tent", True) == "1|Tent"


class TestHelpers:

    def test_normalize_tag(self):
        assert normalize_tag(" Work ") == "#work"
        assert normalize_tag("#Home") == "#home"
        assert normalize_tag("") == ""
        assert normalize_tag(None) == ""

    def test_extract_due_date(self):
        assert extract_due_date("No date") == ("No date", None)
        assert extract_due_date("Pay 📅 2024-02-01") == ("Pay", "2024-02-01")
