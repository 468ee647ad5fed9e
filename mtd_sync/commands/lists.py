"""Commands for inspecting remote lists and binding documents to them."""

from ..core.exceptions import DocumentError
from ..sync.context import SyncContext


class ListsCommand:
    """Command for showing remote lists and where they are used."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose

    def run(self) -> bool:
        collections = self.context.collections(refresh=True)
        if not collections:
            print("No Microsoft To Do lists found.")
            return True

        settings = self.context.settings
        bound = {}
        for document_path, list_id in self.context.state.file_configs.items():
            bound.setdefault(list_id, []).append(document_path)

        print("📋 Microsoft To Do lists:")
        for collection in sorted(collections, key=lambda c: c.display_name.lower()):
            notes = []
            if collection.id == settings.default_list_id:
                notes.append("default")
            tag = self.context.router.tag_for_collection(collection.id)
            if tag:
                notes.append(f"route {tag}")
            suffix = f" ({', '.join(notes)})" if notes else ""
            print(f"   • {collection.display_name}{suffix}")
            if self.verbose:
                print(f"     id: {collection.id}")
            for document_path in sorted(bound.get(collection.id, [])):
                print(f"     ↳ {document_path}")
        return True


class BindCommand:
    """Command for binding a document to a remote list."""

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose

    def run(self, document: str, list_ref: str) -> bool:
        try:
            document_path = self.context.documents.relative_path(document)
        except DocumentError as exc:
            print(f"❌ {exc}")
            return False

        collection = self.context.find_collection(list_ref)
        if collection is None:
            print(f"❌ Unknown list: {list_ref}")
            print("   Run 'mtd-sync lists' to see the available lists.")
            return False

        self.context.state.bind_document(document_path, collection.id)
        if not self.context.save():
            print("❌ Could not save sync state")
            return False
        print(f"🔗 {document_path} → {collection.display_name}")
        return True
