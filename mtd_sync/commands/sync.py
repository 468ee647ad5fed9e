"""Sync commands - full sync, local push, tag routing sweep and clearing state."""

import logging
from typing import List, Optional

from ..core.exceptions import DocumentError
from ..core.models import SyncSummary
from ..sync.context import SyncContext
from ..sync.engine import ReconciliationEngine


def print_summary(summary: SyncSummary, label: Optional[str] = None) -> bool:
    """Print one pass result; returns whether the pass succeeded."""
    name = label or summary.document_path or "vault"
    if summary.skipped:
        print(f"⏭️  {name}: another sync is already running")
        return False
    if summary.error:
        print(f"❌ {name}: {summary.error}")
        return False

    icon = "✅" if not summary.failures else "⚠️ "
    print(f"{icon} {name}: {summary.as_text()}")
    for failure in summary.failures:
        print(f"   • {failure}")
    return True


class SyncCommand:
    """Command for two-way syncing documents with their bound lists."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose
        self.engine = ReconciliationEngine(context)
        self.logger = logging.getLogger(__name__)
        if verbose:
            self.logger.setLevel(logging.DEBUG)

    def _documents(self, document: Optional[str], all_documents: bool) -> List[str]:
        if all_documents:
            return self.engine.bound_documents()
        if document:
            return [self.context.documents.relative_path(document)]
        central = self.context.settings.central_file
        return [central] if central else []

    def run(self, document: Optional[str] = None, all_documents: bool = False) -> bool:
        """Run the sync command."""
        try:
            documents = self._documents(document, all_documents)
        except DocumentError as exc:
            print(f"❌ {exc}")
            return False

        if not documents:
            print("No document to sync. Pass a document, use --all, or set centralFile in the state file.")
            return False

        print(f"\n🔄 Syncing {len(documents)} document(s)...")
        all_success = True
        total = SyncSummary(document_path="total")
        for document_path in documents:
            summary = self.engine.run_full_sync(document_path)
            if not print_summary(summary):
                all_success = False
            total.merge(summary)

        if len(documents) > 1:
            print("=" * 50)
            print_summary(total, "Total")
        return all_success


class PushCommand:
    """Command for pushing local edits and deletions without pulling."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose
        self.engine = ReconciliationEngine(context)

    def run(self, document: str) -> bool:
        try:
            document_path = self.context.documents.relative_path(document)
        except DocumentError as exc:
            print(f"❌ {exc}")
            return False
        print(f"⬆️  Pushing local changes in {document_path}...")
        return print_summary(self.engine.run_local_push_only(document_path))


class RouteCommand:
    """Command for creating or moving tagged tasks across the whole vault."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose
        self.engine = ReconciliationEngine(context)

    def run(self) -> bool:
        if not self.context.router:
            print("No tag routes configured. Add entries to settings.tagRoutes first.")
            return False

        print("🏷️  Tag routes:")
        for rule in self.context.router.rules:
            print(f"   • {rule.tag} → {rule.collection_name or rule.collection_id}")
        print("\n🔍 Scanning vault...")
        return print_summary(self.engine.scan_and_route_all_documents(), "Tag scan")


class ClearCommand:
    """Command for forgetting the sync state of one document."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose
        self.engine = ReconciliationEngine(context)

    def run(self, document: str) -> bool:
        try:
            document_path = self.context.documents.relative_path(document)
        except DocumentError as exc:
            print(f"❌ {exc}")
            return False
        removed = self.engine.clear_document(document_path)
        print(f"🧹 Cleared {removed} mapping(s) for {document_path}")
        print("   Markers stay in the document; the next sync uploads those tasks again.")
        return True
