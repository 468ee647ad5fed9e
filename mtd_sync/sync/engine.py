"""Reconciliation engine: one sync pass over one task document.

A full pass runs these steps:

1. parse the document
2. propagate local deletions (mapped markers that vanished)
3. push local edits of mapped tasks, moving tasks whose routing tag changed
4. upload unmapped tasks (and nested lines as checklist items)
5. merge every bound collection back into the document
6. prune mapping entries that were not rendered
7. write the document and persist the state

Active remote tasks are fetched once before any mutation; mapped tasks
missing from that fetch are looked up individually. The pass works on a
copy of the mapping store that is committed only after the document has
been written. Per-task remote failures are logged and skipped.
"""

import dataclasses
import logging
from typing import Dict, List, Optional, Set, Tuple

from ..core.exceptions import (
    AuthRequiredError,
    ConfigurationError,
    DocumentError,
    RemoteRequestFailed,
)
from ..core.mapping_store import MappingStore
from ..core.models import (
    ChecklistMappingEntry,
    DeletionPolicy,
    MappingEntry,
    MarkerKind,
    RemoteChecklistItem,
    RemoteCollection,
    RemoteTask,
    SyncSummary,
    TaskRecord,
    TaskStatus,
)
from ..markdown.parser import (
    attach_marker,
    format_task_line,
    new_marker_id,
    parse_document,
    parse_heading,
    split_document,
    join_document,
)
from ..markdown.patch import DocumentPatch
from ..utils.date import due_date_to_remote, now_ms
from ..utils.text import (
    extract_due_date,
    find_tag,
    hash_checklist,
    hash_task,
)
from .context import SyncContext
from .resolver import ConflictResolver, SyncRecord, TaskSnapshot, Winner


MASS_DELETION_THRESHOLD = 20
CHILD_INDENT = "  "

# Failures isolated to a single task; everything else aborts the pass.
TASK_ERRORS = (RemoteRequestFailed, AuthRequiredError)

RemoteIndex = Dict[str, Dict[str, RemoteTask]]


@dataclasses.dataclass
class _Pass:
    """Working set of one pass over one document."""

    path: str
    lines: List[str]
    records: List[TaskRecord]
    store: MappingStore
    tags: List[str]
    mtime: int
    summary: SyncSummary
    patch: DocumentPatch = dataclasses.field(default_factory=DocumentPatch)
    remote: Optional[RemoteIndex] = None
    rendered: Set[str] = dataclasses.field(default_factory=set)
    failed: Set[str] = dataclasses.field(default_factory=set)

    def by_marker(self) -> Dict[str, TaskRecord]:
        return {record.marker_id: record for record in self.records if record.marker_id}

    def by_line(self) -> Dict[int, TaskRecord]:
        return {record.line_index: record for record in self.records}

    def children_of(self, record: TaskRecord) -> List[TaskRecord]:
        return [r for r in self.records if r.parent_index == record.line_index]


def remote_fields(task: RemoteTask) -> Tuple[str, Optional[str]]:
    """Title and due date of a remote task, honouring a ``📅`` date typed into its title."""
    title, embedded_due = extract_due_date((task.title or "").strip())
    return title, task.due_date or embedded_due


class ReconciliationEngine:
    """Runs sync passes against a ``SyncContext``."""

    def __init__(self, context: SyncContext, logger: Optional[logging.Logger] = None):
        self.context = context
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = ConflictResolver(context.settings.stale_remote_favors_local, logger=self.logger)

    @property
    def client(self):
        return self.context.client

    # ------------------------------------------------------------------
    # Public passes
    # ------------------------------------------------------------------

    def run_full_sync(self, document_path: str) -> SyncSummary:
        """Two-way sync of one document with its bound collections."""
        return self._guarded(document_path, self._full_pass, "Sync")

    def run_local_push_only(self, document_path: str) -> SyncSummary:
        """Propagate local deletions and edits without re-fetching remote lists."""
        return self._guarded(document_path, self._push_pass, "Push")

    def scan_and_route_all_documents(self) -> SyncSummary:
        """Create or move tagged tasks in every document of the vault."""
        return self._guarded("", self._scan_pass, "Tag scan")

    def sync_bound_documents(self) -> List[SyncSummary]:
        """Full sync for every document bound to at least one collection."""
        return [self.run_full_sync(path) for path in self.bound_documents()]

    def bound_documents(self) -> List[str]:
        settings = self.context.settings
        paths = set(self.context.state.file_configs)
        if settings.central_file:
            paths.add(settings.central_file)
        try:
            paths.update(self.context.documents.find_annotated())
        except DocumentError as exc:
            self.logger.warning(f"Could not scan for bound documents: {exc}")
        return sorted(path for path in paths if self.context.documents.exists(path))

    def clear_document(self, document_path: str) -> int:
        """Forget all mappings and the binding of one document."""
        removed = self.context.mappings.clear_document(document_path)
        self.context.state.unbind_document(document_path)
        self.context.save()
        self.logger.info(f"Cleared {removed} mapping(s) for {document_path}")
        return removed

    def _guarded(self, document_path: str, runner, label: str) -> SyncSummary:
        summary = SyncSummary(document_path=document_path)
        with self.context.exclusive_pass() as acquired:
            if not acquired:
                self.logger.info(f"{label} skipped for {document_path or 'vault'}: another pass is running")
                summary.skipped = True
                return summary
            try:
                runner(document_path, summary)
            except (AuthRequiredError, DocumentError, ConfigurationError, RemoteRequestFailed) as exc:
                summary.error = str(exc)
                where = document_path or "vault"
                self.logger.error(f"{label} failed for {where}: {exc}")
                self.context.notify(f"{label} failed for {where}: {exc}")
                return summary

        self.context.notify(f"{label} {document_path or 'vault'}: {summary.as_text()}")
        return summary

    # ------------------------------------------------------------------
    # Pass bodies
    # ------------------------------------------------------------------

    def _load(self, document_path: str, summary: SyncSummary) -> Tuple[_Pass, bool]:
        text = self.context.documents.read(document_path)
        lines, trailing_newline = split_document(text)
        tags = self.context.tag_names()
        work = _Pass(
            path=document_path,
            lines=lines,
            records=parse_document(lines, tags),
            store=self.context.mappings.copy(),
            tags=tags,
            mtime=self.context.documents.mtime_ms(document_path),
            summary=summary,
        )
        return work, trailing_newline or not lines

    def _commit(self, work: _Pass, trailing_newline: bool) -> None:
        new_lines = work.patch.apply(work.lines)
        if new_lines != work.lines:
            self.context.documents.write(work.path, join_document(new_lines, trailing_newline))
        self.context.mappings.replace_with(work.store)
        if not self.context.save():
            work.summary.error = "Could not save sync state"
            self.logger.error(f"Could not save sync state after syncing {work.path}")

    def _full_pass(self, document_path: str, summary: SyncSummary) -> None:
        # Collections first: this is where a missing login surfaces.
        self.context.collections()
        work, trailing_newline = self._load(document_path, summary)

        bound = self.bound_collections(document_path)
        effective = self._effective_collections(work, bound)
        work.remote = self._fetch(effective)

        allowed = {collection.id for collection in effective}
        self._propagate_deletions(work)
        self._push_local_changes(work, allowed)
        self._upload_new_tasks(work, bound, allowed)
        self._merge_remote(work, bound, effective)
        self._prune(work)
        self._commit(work, trailing_newline)

    def _push_pass(self, document_path: str, summary: SyncSummary) -> None:
        self.context.collections()
        work, trailing_newline = self._load(document_path, summary)
        bound = self.bound_collections(document_path)
        allowed = {collection.id for collection in self._effective_collections(work, bound)}
        self._propagate_deletions(work)
        self._push_local_changes(work, allowed)
        self._commit(work, trailing_newline)

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bound_collections(self, document_path: str) -> List[RemoteCollection]:
        """
        Collections a document is bound to, sorted by display name.

        Front matter ``mtd-lists`` wins over the stored per-document binding,
        which wins over the default list.
        """
        context = self.context
        found: Dict[str, RemoteCollection] = {}

        for reference in context.documents.read_annotation(document_path):
            collection = context.find_collection(reference)
            if collection is None:
                context.collections(refresh=True)
                collection = context.find_collection(reference)
            if collection is None:
                self.logger.warning(f"{document_path}: unknown list '{reference}' in front matter")
                continue
            found[collection.id] = collection

        if not found:
            for reference in (context.state.bound_list_id(document_path), context.settings.default_list_id):
                collection = context.find_collection(reference) if reference else None
                if collection is not None:
                    found[collection.id] = collection
                    break

        return sorted(found.values(), key=lambda c: (c.display_name.lower(), c.id))

    def _effective_collections(self, work: _Pass, bound: List[RemoteCollection]) -> List[RemoteCollection]:
        """Bound collections plus those reachable through routing tags or headings."""
        found = {collection.id: collection for collection in bound}
        for rule in self.context.router.rules:
            collection = self.context.find_collection(rule.collection_id)
            if collection is not None:
                found.setdefault(collection.id, collection)
        for heading in {record.heading for record in work.records if record.heading}:
            collection = self._collection_for_heading(heading)
            if collection is not None:
                found.setdefault(collection.id, collection)
        return sorted(found.values(), key=lambda c: (c.display_name.lower(), c.id))

    def _collection_for_heading(self, heading: str) -> Optional[RemoteCollection]:
        lowered = heading.strip().lower()
        for collection in self.context.collections():
            if collection.display_name.strip().lower() == lowered:
                return collection
        return None

    def _fetch(self, collections: List[RemoteCollection]) -> RemoteIndex:
        """
        Active tasks of every collection.

        Mapped tasks missing from the result are looked up one by one during
        the merge, whatever their status.
        """
        limit = self.context.settings.fetch_limit
        index: RemoteIndex = {}
        for collection in collections:
            tasks = self.client.list_tasks(collection.id, limit=limit, only_active=True)
            index[collection.id] = {task.id: task for task in tasks}
            self.logger.debug(f"Fetched {len(tasks)} active task(s) from {collection.display_name}")
        return index

    # ------------------------------------------------------------------
    # Step 2: local deletions
    # ------------------------------------------------------------------

    def _propagate_deletions(self, work: _Pass) -> None:
        present = {record.marker_id for record in work.records if record.marker_id}
        removed_tasks = {m: e for m, e in work.store.list_tasks(work.path).items() if m not in present}
        removed_items = {m: e for m, e in work.store.list_checklist(work.path).items() if m not in present}
        if not removed_tasks and not removed_items:
            return

        policy = self.context.settings.deletion_policy
        total = len(removed_tasks) + len(removed_items)
        if not work.records and total > MASS_DELETION_THRESHOLD:
            self.logger.warning(
                f"{work.path} has no tasks left but {total} mapped; unbinding without touching remote lists"
            )
            self.context.notify(f"{work.path}: {total} mappings unbound, remote tasks left untouched")
            policy = DeletionPolicy.DETACH

        deleted_parents = set()
        for marker_id, entry in removed_tasks.items():
            if policy != DeletionPolicy.DETACH:
                self._apply_task_deletion(work, policy, entry)
                work.summary.deleted += 1
                if policy == DeletionPolicy.DELETE:
                    deleted_parents.add(entry.remote_task_id)
            work.store.delete_task(work.path, marker_id)
            self._forget_remote(work, entry.list_id, entry.remote_task_id)

        for marker_id, entry in removed_items.items():
            if policy != DeletionPolicy.DETACH and entry.parent_task_id not in deleted_parents:
                self._apply_checklist_deletion(work, policy, entry)
                work.summary.deleted += 1
            work.store.delete_checklist(work.path, marker_id)
            self._forget_remote_item(work, entry)

    def _apply_task_deletion(self, work: _Pass, policy: DeletionPolicy, entry: MappingEntry) -> None:
        label = f"{work.path} ({self.context.collection_name(entry.list_id)})"
        try:
            if policy == DeletionPolicy.DELETE:
                self.client.delete_task(entry.list_id, entry.remote_task_id, missing_ok=True)
            else:
                self.client.update_task(entry.list_id, entry.remote_task_id, completed=True)
            self.logger.debug(f"Applied '{policy.value}' to remote task {entry.remote_task_id} from {label}")
        except TASK_ERRORS as exc:
            self._task_failed(work, f"Could not {policy.value} remote task removed from {label}", exc)

    def _apply_checklist_deletion(self, work: _Pass, policy: DeletionPolicy, entry: ChecklistMappingEntry) -> None:
        label = f"{work.path} ({self.context.collection_name(entry.list_id)})"
        try:
            if policy == DeletionPolicy.DELETE:
                self.client.delete_checklist_item(
                    entry.list_id, entry.parent_task_id, entry.checklist_item_id, missing_ok=True
                )
            else:
                self.client.update_checklist_item(
                    entry.list_id, entry.parent_task_id, entry.checklist_item_id, checked=True
                )
        except RemoteRequestFailed as exc:
            if exc.is_not_found:
                self.logger.debug(f"Checklist item {entry.checklist_item_id} already gone")
                return
            self._task_failed(work, f"Could not {policy.value} checklist item removed from {label}", exc)
        except AuthRequiredError as exc:
            self._task_failed(work, f"Could not {policy.value} checklist item removed from {label}", exc)

    def _forget_remote(self, work: _Pass, list_id: str, task_id: str) -> None:
        if work.remote is not None:
            work.remote.get(list_id, {}).pop(task_id, None)

    def _forget_remote_item(self, work: _Pass, entry: ChecklistMappingEntry) -> None:
        if work.remote is None:
            return
        task = work.remote.get(entry.list_id, {}).get(entry.parent_task_id)
        if task is not None:
            task.checklist_items = [i for i in task.checklist_items if i.id != entry.checklist_item_id]

    def _task_failed(self, work: _Pass, message: str, exc: Exception) -> None:
        self.logger.warning(f"{message}: {exc}")
        work.summary.failures.append(f"{message}: {exc}")

    # ------------------------------------------------------------------
    # Step 3: local edits and tag moves
    # ------------------------------------------------------------------

    def _push_local_changes(self, work: _Pass, allowed: Set[str]) -> None:
        by_marker = work.by_marker()
        for record in work.records:
            if not record.marker_id:
                continue
            if record.is_checklist:
                self._push_checklist_change(work, record)
                continue

            entry = work.store.get_task(work.path, record.marker_id)
            if entry is None:
                continue

            rule = self.context.router.resolve(record.tag)
            if rule is not None and rule.collection_id != entry.list_id:
                self._move_task(work, record, entry, rule.collection_id, by_marker)
                continue

            if entry.list_id not in allowed:
                continue
            local_hash = hash_task(record.title, record.completed, record.due_date, work.tags)
            if local_hash == entry.last_synced_local_hash:
                continue
            self._push_task(work, record, entry, local_hash)

    def _push_task(self, work: _Pass, record: TaskRecord, entry: MappingEntry, local_hash: str) -> None:
        label = f"{work.path}: '{record.title}' ({self.context.collection_name(entry.list_id)})"
        try:
            updated = self.client.update_task(
                entry.list_id,
                entry.remote_task_id,
                title=record.title,
                completed=record.completed,
                due_date=record.due_date,
            )
        except TASK_ERRORS as exc:
            work.failed.add(record.marker_id)
            self._task_failed(work, f"Could not push {label}", exc)
            return

        current = self._remember_push(work, entry, record, updated)
        title, due = remote_fields(current)
        entry.last_synced_local_hash = local_hash
        entry.last_synced_remote_hash = hash_task(title, current.completed, due, work.tags)
        entry.last_known_remote_modified = current.last_modified or entry.last_known_remote_modified
        entry.last_synced_at = now_ms()
        entry.last_synced_file_mtime = work.mtime
        work.summary.pushed += 1
        self.logger.debug(f"Pushed {label}")

    def _remember_push(
        self,
        work: _Pass,
        entry: MappingEntry,
        record: TaskRecord,
        updated: Optional[RemoteTask],
    ) -> RemoteTask:
        """Reflect a pushed update in the fetched remote view."""
        previous = None
        if work.remote is not None:
            previous = work.remote.get(entry.list_id, {}).get(entry.remote_task_id)
        if updated is not None and updated.id:
            current = updated
            if previous is not None and not current.checklist_items:
                current.checklist_items = previous.checklist_items
        else:
            due = due_date_to_remote(record.due_date)["dateTime"] if record.due_date else None
            current = RemoteTask(
                id=entry.remote_task_id,
                title=record.title,
                status=TaskStatus.COMPLETED if record.completed else TaskStatus.NOT_STARTED,
                last_modified=previous.last_modified if previous else entry.last_known_remote_modified,
                due_date_time=due,
                checklist_items=previous.checklist_items if previous else [],
            )
        if work.remote is not None and previous is not None:
            work.remote[entry.list_id][entry.remote_task_id] = current
        return current

    def _push_checklist_change(self, work: _Pass, record: TaskRecord) -> None:
        entry = work.store.get_checklist(work.path, record.marker_id)
        if entry is None:
            return
        local_hash = hash_checklist(record.title, record.completed, work.tags)
        if local_hash == entry.last_synced_local_hash:
            return
        try:
            self.client.update_checklist_item(
                entry.list_id,
                entry.parent_task_id,
                entry.checklist_item_id,
                display_name=record.title,
                checked=record.completed,
            )
        except TASK_ERRORS as exc:
            work.failed.add(record.marker_id)
            self._task_failed(work, f"Could not push checklist item '{record.title}' in {work.path}", exc)
            return

        if work.remote is not None:
            task = work.remote.get(entry.list_id, {}).get(entry.parent_task_id)
            for item in task.checklist_items if task else []:
                if item.id == entry.checklist_item_id:
                    item.display_name = record.title
                    item.checked = record.completed
        entry.last_synced_local_hash = local_hash
        entry.last_synced_remote_hash = local_hash
        entry.last_synced_at = now_ms()
        entry.last_synced_file_mtime = work.mtime
        work.summary.pushed += 1

    def _move_task(
        self,
        work: _Pass,
        record: TaskRecord,
        entry: MappingEntry,
        target_id: str,
        by_marker: Dict[str, TaskRecord],
    ) -> None:
        """Recreate a task in ``target_id`` and drop the old one, keeping the marker."""
        source_name = self.context.collection_name(entry.list_id)
        target_name = self.context.collection_name(target_id)
        label = f"{work.path}: '{record.title}' ({source_name} -> {target_name})"
        try:
            created = self.client.create_task(target_id, record.title, record.completed, record.due_date)
        except TASK_ERRORS as exc:
            work.failed.add(record.marker_id)
            self._task_failed(work, f"Could not move {label}", exc)
            return

        try:
            self.client.delete_task(entry.list_id, entry.remote_task_id, missing_ok=True)
        except TASK_ERRORS as exc:
            self._task_failed(work, f"Moved {label} but could not delete the original", exc)

        self._forget_remote(work, entry.list_id, entry.remote_task_id)
        new_entry = self._new_task_entry(work, record, target_id, created)
        work.store.set_task(work.path, record.marker_id, new_entry)

        for child_marker, child_entry in work.store.checklist_for_parent(work.path, entry.remote_task_id).items():
            work.store.delete_checklist(work.path, child_marker)
            child = by_marker.get(child_marker)
            if child is not None:
                self._create_checklist_item(work, child, new_entry, created, child_marker)

        if work.remote is not None:
            work.remote.setdefault(target_id, {})[created.id] = created
        work.summary.moved += 1
        self.logger.info(f"Moved {label}")

    # ------------------------------------------------------------------
    # Step 4: uploads
    # ------------------------------------------------------------------

    def resolve_target(self, record: TaskRecord, bound: List[RemoteCollection], allowed: Set[str]) -> Optional[str]:
        """Routing tag, else heading matching a list name, else the only bound list."""
        rule = self.context.router.resolve(record.tag)
        if rule is not None:
            return rule.collection_id
        if record.heading:
            collection = self._collection_for_heading(record.heading)
            if collection is not None and collection.id in allowed:
                return collection.id
        if len(bound) == 1:
            return bound[0].id
        return None

    def _upload_new_tasks(self, work: _Pass, bound: List[RemoteCollection], allowed: Set[str]) -> None:
        by_line = work.by_line()
        for record in work.records:
            if record.is_checklist:
                continue
            if record.marker_id and work.store.get_task(work.path, record.marker_id) is not None:
                continue
            target = self.resolve_target(record, bound, allowed)
            if target is None:
                self.logger.debug(f"{work.path}: no list for '{record.title}', leaving it local")
                continue
            self._create_task(work, record, target)

        for record in work.records:
            if not record.is_checklist or record.parent_index is None:
                continue
            if record.marker_id and work.store.get_checklist(work.path, record.marker_id) is not None:
                continue
            parent = by_line.get(record.parent_index)
            if parent is None or not parent.marker_id or parent.marker_id in work.failed:
                continue
            parent_entry = work.store.get_task(work.path, parent.marker_id)
            if parent_entry is None:
                continue
            parent_task = None
            if work.remote is not None:
                parent_task = work.remote.get(parent_entry.list_id, {}).get(parent_entry.remote_task_id)
            self._create_checklist_item(work, record, parent_entry, parent_task, record.marker_id)

    def _create_task(self, work: _Pass, record: TaskRecord, target_id: str) -> None:
        label = f"{work.path}: '{record.title}' ({self.context.collection_name(target_id)})"
        try:
            created = self.client.create_task(target_id, record.title, record.completed, record.due_date)
        except TASK_ERRORS as exc:
            self._task_failed(work, f"Could not create {label}", exc)
            return

        marker_id = record.marker_id or new_marker_id()
        if record.marker_id != marker_id or record.marker_kind != MarkerKind.COMMENT:
            work.patch.replace(record.line_index, attach_marker(work.lines[record.line_index], marker_id))
        record.marker_id = marker_id
        work.store.set_task(work.path, marker_id, self._new_task_entry(work, record, target_id, created))
        if work.remote is not None:
            work.remote.setdefault(target_id, {})[created.id] = created
        work.summary.created += 1
        self.logger.info(f"Created {label}")

    def _new_task_entry(self, work: _Pass, record: TaskRecord, list_id: str, created: RemoteTask) -> MappingEntry:
        title, due = remote_fields(created)
        return MappingEntry(
            list_id=list_id,
            remote_task_id=created.id,
            last_synced_at=now_ms(),
            last_synced_local_hash=hash_task(record.title, record.completed, record.due_date, work.tags),
            last_synced_remote_hash=hash_task(title, created.completed, due, work.tags),
            last_synced_file_mtime=work.mtime,
            last_known_remote_modified=created.last_modified,
        )

    def _create_checklist_item(
        self,
        work: _Pass,
        record: TaskRecord,
        parent_entry: MappingEntry,
        parent_task: Optional[RemoteTask],
        marker_id: str = "",
    ) -> None:
        try:
            item = self.client.create_checklist_item(
                parent_entry.list_id, parent_entry.remote_task_id, record.title, record.completed
            )
        except TASK_ERRORS as exc:
            self._task_failed(work, f"Could not create checklist item '{record.title}' in {work.path}", exc)
            return

        marker_id = marker_id or new_marker_id(checklist=True)
        if record.marker_id != marker_id or record.marker_kind != MarkerKind.COMMENT:
            work.patch.replace(record.line_index, attach_marker(work.lines[record.line_index], marker_id))
        record.marker_id = marker_id
        local_hash = hash_checklist(record.title, record.completed, work.tags)
        work.store.set_checklist(work.path, marker_id, ChecklistMappingEntry(
            list_id=parent_entry.list_id,
            parent_task_id=parent_entry.remote_task_id,
            checklist_item_id=item.id,
            last_synced_at=now_ms(),
            last_synced_local_hash=local_hash,
            last_synced_remote_hash=hash_checklist(item.display_name, item.checked, work.tags),
            last_synced_file_mtime=work.mtime,
            last_known_remote_modified=item.last_modified,
        ))
        if parent_task is not None:
            parent_task.checklist_items.append(item)
        work.summary.created += 1

    # ------------------------------------------------------------------
    # Step 5: merge remote state into the document
    # ------------------------------------------------------------------

    def _merge_remote(self, work: _Pass, bound: List[RemoteCollection], effective: List[RemoteCollection]) -> None:
        bound_ids = {collection.id for collection in bound}
        by_marker = work.by_marker()
        # Tasks owned by other documents are never imported here.
        elsewhere = {entry.remote_task_id for path, _, entry in work.store.iter_tasks() if path != work.path}
        remote = work.remote or {}

        for collection in effective:
            new_lines: List[str] = []
            for task in remote.get(collection.id, {}).values():
                marker_id = work.store.find_task_marker(work.path, task.id)
                if marker_id is None:
                    if collection.id in bound_ids and not task.completed and task.id not in elsewhere:
                        new_lines.extend(self._import_task(work, collection, task))
                    continue
                record = by_marker.get(marker_id)
                entry = work.store.get_task(work.path, marker_id)
                if record is None or entry is None:
                    continue
                self._merge_task(work, record, entry, task, collection.id)
            if new_lines:
                self._insert_into_section(work, collection.display_name, new_lines)

        effective_ids = {collection.id for collection in effective}
        for marker_id, entry in work.store.list_tasks(work.path).items():
            record = by_marker.get(marker_id)
            if marker_id in work.rendered or record is None:
                continue
            if entry.list_id not in effective_ids:
                work.rendered.add(marker_id)
                self._keep_children(work, record)
                continue
            self._confirm_missing(work, record, entry)

    def _render_tag(self, record_tag: Optional[str], collection_id: str, title: str) -> Optional[str]:
        router = self.context.router
        tag = None
        if record_tag:
            rule = router.resolve(record_tag)
            if rule is None or rule.collection_id == collection_id:
                tag = record_tag
        if tag is None:
            tag = router.tag_for_collection(collection_id) or self.context.pull_tag_for(collection_id)
        if tag and find_tag(title, [tag]) is not None:
            return None
        return tag

    def _merge_task(self, work: _Pass, record: TaskRecord, entry: MappingEntry, task: RemoteTask, list_id: str) -> None:
        work.rendered.add(record.marker_id)
        if record.marker_id in work.failed:
            self._keep_children(work, record)
            return

        label = f"{work.path}: '{record.title}' ({self.context.collection_name(list_id)})"
        remote_title, remote_due = remote_fields(task)
        local_hash = hash_task(record.title, record.completed, record.due_date, work.tags)
        remote_hash = hash_task(remote_title, task.completed, remote_due, work.tags)

        winner = self.resolver.resolve(
            label,
            TaskSnapshot(local_hash),
            TaskSnapshot(remote_hash, task.last_modified),
            SyncRecord(entry.last_synced_local_hash, entry.last_synced_remote_hash, entry.last_known_remote_modified),
        )

        if winner == Winner.REMOTE:
            if remote_hash != local_hash:
                tag = self._render_tag(record.tag, list_id, remote_title)
                line = format_task_line(
                    record.indent, record.bullet, task.completed, remote_title, remote_due, tag, record.marker_id
                )
                if line != work.lines[record.line_index]:
                    work.patch.replace(record.line_index, line)
                work.summary.pulled += 1
                self.logger.debug(f"Pulled remote changes into {label}")
            entry.last_synced_local_hash = remote_hash
            entry.last_synced_remote_hash = remote_hash
            entry.last_known_remote_modified = task.last_modified
        else:
            if remote_hash != local_hash:
                try:
                    updated = self.client.update_task(
                        list_id,
                        task.id,
                        title=record.title,
                        completed=record.completed,
                        due_date=record.due_date,
                    )
                except TASK_ERRORS as exc:
                    self._task_failed(work, f"Could not push {label}", exc)
                    self._keep_children(work, record)
                    return
                current = self._remember_push(work, entry, record, updated)
                title, due = remote_fields(current)
                remote_hash = hash_task(title, current.completed, due, work.tags)
                if updated is not None and updated.last_modified:
                    entry.last_known_remote_modified = updated.last_modified
                task = current
                work.summary.pushed += 1
            entry.last_synced_local_hash = local_hash
            entry.last_synced_remote_hash = remote_hash

        entry.last_synced_at = now_ms()
        entry.last_synced_file_mtime = work.mtime
        self._merge_checklist(work, record, entry, task)

    def _keep_children(self, work: _Pass, record: TaskRecord) -> None:
        for child in work.children_of(record):
            if child.marker_id:
                work.rendered.add(child.marker_id)

    def _merge_checklist(self, work: _Pass, record: TaskRecord, entry: MappingEntry, task: RemoteTask) -> None:
        by_marker = work.by_marker()
        children = work.children_of(record)
        mapped = work.store.checklist_for_parent(work.path, task.id)
        seen_items = set()
        new_lines: List[str] = []

        for item in task.checklist_items:
            seen_items.add(item.id)
            marker_id = work.store.find_checklist_marker(work.path, item.id)
            if marker_id not in mapped:
                if not item.checked:
                    new_lines.append(self._import_checklist_item(work, record, entry, item))
                continue
            child = by_marker.get(marker_id)
            child_entry = mapped[marker_id]
            if child is None:
                continue
            work.rendered.add(marker_id)
            if marker_id not in work.failed:
                self._merge_checklist_item(work, child, child_entry, item, entry.list_id, task.id)

        # Mapped items the remote task no longer has were deleted remotely.
        for marker_id, child_entry in mapped.items():
            child = by_marker.get(marker_id)
            if child is not None and child_entry.checklist_item_id not in seen_items:
                work.patch.remove(child.line_index)
                work.summary.removed += 1

        if new_lines:
            anchor = max([record.line_index] + [child.line_index for child in children])
            work.patch.insert_after(anchor, new_lines)

    def _merge_checklist_item(
        self,
        work: _Pass,
        record: TaskRecord,
        entry: ChecklistMappingEntry,
        item: RemoteChecklistItem,
        list_id: str,
        task_id: str,
    ) -> None:
        local_hash = hash_checklist(record.title, record.completed, work.tags)
        remote_hash = hash_checklist(item.display_name, item.checked, work.tags)
        winner = self.resolver.resolve(
            f"{work.path}: checklist '{record.title}'",
            TaskSnapshot(local_hash),
            TaskSnapshot(remote_hash, item.last_modified),
            SyncRecord(entry.last_synced_local_hash, entry.last_synced_remote_hash, entry.last_known_remote_modified),
        )

        if winner == Winner.REMOTE:
            if remote_hash != local_hash:
                line = format_task_line(
                    record.indent, record.bullet, item.checked, item.display_name.strip(),
                    record.due_date, record.tag, record.marker_id,
                )
                work.patch.replace(record.line_index, line)
                work.summary.pulled += 1
            entry.last_synced_local_hash = remote_hash
            entry.last_synced_remote_hash = remote_hash
            entry.last_known_remote_modified = item.last_modified
        else:
            if remote_hash != local_hash:
                try:
                    self.client.update_checklist_item(
                        list_id, task_id, item.id, display_name=record.title, checked=record.completed
                    )
                except TASK_ERRORS as exc:
                    self._task_failed(work, f"Could not push checklist item '{record.title}' in {work.path}", exc)
                    return
                remote_hash = local_hash
                work.summary.pushed += 1
            entry.last_synced_local_hash = local_hash
            entry.last_synced_remote_hash = remote_hash

        entry.last_synced_at = now_ms()
        entry.last_synced_file_mtime = work.mtime

    def _import_task(self, work: _Pass, collection: RemoteCollection, task: RemoteTask) -> List[str]:
        """Render a never-seen remote task (and its open checklist items) as new lines."""
        title, due = remote_fields(task)
        if not title:
            return []
        marker_id = new_marker_id()
        tag = self._render_tag(None, collection.id, title)
        lines = [format_task_line("", "-", task.completed, title, due, tag, marker_id)]

        content_hash = hash_task(title, task.completed, due, work.tags)
        entry = MappingEntry(
            list_id=collection.id,
            remote_task_id=task.id,
            last_synced_at=now_ms(),
            last_synced_local_hash=content_hash,
            last_synced_remote_hash=content_hash,
            last_synced_file_mtime=work.mtime,
            last_known_remote_modified=task.last_modified,
        )
        work.store.set_task(work.path, marker_id, entry)
        work.rendered.add(marker_id)

        for item in task.checklist_items:
            if item.checked or not item.display_name.strip():
                continue
            lines.append(self._import_checklist_item(work, None, entry, item))

        work.summary.pulled += 1
        return lines

    def _import_checklist_item(
        self,
        work: _Pass,
        parent: Optional[TaskRecord],
        parent_entry: MappingEntry,
        item: RemoteChecklistItem,
    ) -> str:
        marker_id = new_marker_id(checklist=True)
        indent = (parent.indent if parent else "") + CHILD_INDENT
        name = item.display_name.strip()
        content_hash = hash_checklist(name, item.checked, work.tags)
        work.store.set_checklist(work.path, marker_id, ChecklistMappingEntry(
            list_id=parent_entry.list_id,
            parent_task_id=parent_entry.remote_task_id,
            checklist_item_id=item.id,
            last_synced_at=now_ms(),
            last_synced_local_hash=content_hash,
            last_synced_remote_hash=content_hash,
            last_synced_file_mtime=work.mtime,
            last_known_remote_modified=item.last_modified,
        ))
        work.rendered.add(marker_id)
        if parent is not None:
            work.summary.pulled += 1
        return format_task_line(indent, "-", item.checked, name, None, None, marker_id)

    def _insert_into_section(self, work: _Pass, heading: str, new_lines: List[str]) -> None:
        """Place new lines at the end of the section titled ``heading``, or in a new section."""
        wanted = heading.strip().lower()
        start = None
        end = len(work.lines)
        for index, line in enumerate(work.lines):
            text = parse_heading(line)
            if text is None:
                continue
            if start is not None:
                end = index
                break
            if text.strip().lower() == wanted:
                start = index

        if start is None:
            work.patch.append_section(heading, new_lines)
            return

        anchor = start
        for index in range(start + 1, end):
            if work.lines[index].strip():
                anchor = index
        work.patch.insert_after(anchor, new_lines)

    def _confirm_missing(self, work: _Pass, record: TaskRecord, entry: MappingEntry) -> None:
        """A mapped task absent from the fetch: deleted remotely, or just beyond the fetch limit."""
        label = f"{work.path}: '{record.title}' ({self.context.collection_name(entry.list_id)})"
        try:
            task = self.client.get_task(entry.list_id, entry.remote_task_id)
        except TASK_ERRORS as exc:
            self._task_failed(work, f"Could not check {label}", exc)
            work.rendered.add(record.marker_id)
            self._keep_children(work, record)
            return

        if task is None:
            work.patch.remove(record.line_index)
            for child in work.children_of(record):
                work.patch.remove(child.line_index)
            work.summary.removed += 1
            self.logger.info(f"Removed {label}: deleted remotely")
            return

        self._merge_task(work, record, entry, task, entry.list_id)

    # ------------------------------------------------------------------
    # Step 6: prune
    # ------------------------------------------------------------------

    def _prune(self, work: _Pass) -> None:
        for marker_id in list(work.store.list_tasks(work.path)):
            if marker_id not in work.rendered:
                work.store.delete_task(work.path, marker_id)
                self.logger.debug(f"Pruned task mapping {marker_id} of {work.path}")
        for marker_id in list(work.store.list_checklist(work.path)):
            if marker_id not in work.rendered:
                work.store.delete_checklist(work.path, marker_id)
                self.logger.debug(f"Pruned checklist mapping {marker_id} of {work.path}")

    # ------------------------------------------------------------------
    # Tag scan over every document
    # ------------------------------------------------------------------

    def _scan_pass(self, _document_path: str, summary: SyncSummary) -> None:
        context = self.context
        if not context.router:
            raise ConfigurationError("No tag routes configured")
        context.collections()

        for document_path in context.documents.list_documents():
            try:
                self._scan_document(document_path, summary)
            except DocumentError as exc:
                self._scan_failed(summary, document_path, exc)

    def _scan_failed(self, summary: SyncSummary, document_path: str, exc: Exception) -> None:
        self.logger.warning(f"Tag scan skipped {document_path}: {exc}")
        summary.failures.append(f"{document_path}: {exc}")

    def _scan_document(self, document_path: str, summary: SyncSummary) -> None:
        context = self.context
        text = context.documents.read(document_path)
        lines, trailing_newline = split_document(text)
        tags = context.tag_names()
        records = parse_document(lines, tags)
        store = context.mappings
        mtime = context.documents.mtime_ms(document_path)

        for record in records:
            if record.is_checklist:
                continue
            rule = context.router.resolve(record.tag)
            if rule is None:
                continue
            entry = store.get_task(document_path, record.marker_id) if record.marker_id else None
            if entry is not None and entry.list_id == rule.collection_id:
                continue

            work = _Pass(
                path=document_path,
                lines=lines,
                records=records,
                store=store,
                tags=tags,
                mtime=mtime,
                summary=summary,
            )

            if entry is not None:
                self._move_task(work, record, entry, rule.collection_id, work.by_marker())
                # Recreated children may have had their markers upgraded.
                updated = work.patch.apply(lines)
                if updated != lines:
                    lines[:] = updated
                    context.documents.write(document_path, join_document(lines, trailing_newline or not lines))
                    mtime = context.documents.mtime_ms(document_path)
                context.save()
                continue

            # Marker goes into the document before the remote create, so an
            # interrupted scan leaves a line that the next scan uploads.
            if not record.marker_id or record.marker_kind != MarkerKind.COMMENT:
                record.marker_id = record.marker_id or new_marker_id()
                lines[record.line_index] = attach_marker(lines[record.line_index], record.marker_id)
                context.documents.write(document_path, join_document(lines, trailing_newline or not lines))
                mtime = context.documents.mtime_ms(document_path)
                work.mtime = mtime

            label = f"{document_path}: '{record.title}' ({context.collection_name(rule.collection_id)})"
            try:
                created = self.client.create_task(rule.collection_id, record.title, record.completed, record.due_date)
            except TASK_ERRORS as exc:
                self._task_failed(work, f"Could not create {label}", exc)
                continue
            store.set_task(document_path, record.marker_id, self._new_task_entry(work, record, rule.collection_id, created))
            context.save()
            summary.created += 1
            self.logger.info(f"Created {label}")
