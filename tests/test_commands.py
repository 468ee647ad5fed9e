"""
Tests for the command classes against an in-memory remote service.
"""

from unittest.mock import Mock

from mtd_sync.commands import (
    BindCommand,
    ClearCommand,
    ListsCommand,
    LoginCommand,
    LogoutCommand,
    PushCommand,
    RouteCommand,
    SyncCommand,
)
from mtd_sync.core.config import SyncState, load_state
from mtd_sync.core.exceptions import AuthenticationFailedError
from mtd_sync.core.models import SyncSummary
from mtd_sync.commands.sync import print_summary
from tests.fakes import read_doc, write_doc


class TestSyncCommand:

    def test_syncs_named_document(self, vault, remote, make_context, capsys):
        write_doc(vault, "Tasks.md", "- [ ] Call Bob\n")
        command = SyncCommand(make_context(default_list="W"))

        assert command.run(document="Tasks.md")

        assert [t.title for t in remote.tasks["W"].values()] == ["Call Bob"]
        assert "Tasks.md: created 1" in capsys.readouterr().out

    def test_falls_back_to_central_file(self, vault, remote, make_context):
        write_doc(vault, "Inbox.md", "- [ ] Pay rent\n")
        command = SyncCommand(make_context(default_list="H", central_file="Inbox.md"))

        assert command.run()
        assert len(remote.tasks["H"]) == 1

    def test_nothing_to_sync(self, make_context, capsys):
        assert not SyncCommand(make_context(default_list="W")).run()
        assert "No document to sync" in capsys.readouterr().out

    def test_all_bound_documents(self, vault, remote, make_context, capsys):
        write_doc(vault, "a.md", "- [ ] One\n")
        write_doc(vault, "b.md", "- [ ] Two\n")
        context = make_context()
        context.state.bind_document("a.md", "W")
        context.state.bind_document("b.md", "H")

        assert SyncCommand(context).run(all_documents=True)

        assert len(remote.tasks["W"]) == 1
        assert len(remote.tasks["H"]) == 1
        assert "Total" in capsys.readouterr().out

    def test_document_outside_vault(self, tmp_path, make_context, capsys):
        outside = tmp_path / "outside.md"
        assert not SyncCommand(make_context(default_list="W")).run(document=str(outside))
        assert "outside the vault" in capsys.readouterr().out


class TestPushAndRoute:

    def test_push_sends_edits_but_does_not_import(self, vault, remote, make_context):
        write_doc(vault, "Tasks.md", "- [ ] Call Bob\n")
        context = make_context(default_list="W")
        SyncCommand(context).run(document="Tasks.md")
        remote.add_task("W", "Remote only")
        write_doc(vault, "Tasks.md", read_doc(vault, "Tasks.md").replace("Call Bob", "Call Alice"))

        assert PushCommand(context).run("Tasks.md")

        assert "Remote only" not in read_doc(vault, "Tasks.md")
        assert sorted(t.title for t in remote.tasks["W"].values()) == ["Call Alice", "Remote only"]

    def test_route_without_rules(self, make_context, capsys):
        assert not RouteCommand(make_context()).run()
        assert "No tag routes" in capsys.readouterr().out

    def test_route_scans_vault(self, vault, remote, make_context, capsys):
        write_doc(vault, "notes/Errands.md", "- [ ] Groceries #home\n")

        assert RouteCommand(make_context(routes={"#home": "H"})).run()

        assert [t.title for t in remote.tasks["H"].values()] == ["Groceries"]
        assert "#home → H" in capsys.readouterr().out


class TestListsAndBind:

    def test_lists_marks_default_and_bindings(self, make_context, capsys):
        context = make_context(default_list="W", routes={"#home": "H"})
        context.state.bind_document("Tasks.md", "W")

        assert ListsCommand(context).run()

        out = capsys.readouterr().out
        assert "Work (default)" in out
        assert "Home (route #home)" in out
        assert "↳ Tasks.md" in out

    def test_bind_by_name_saves_state(self, make_context, state_path):
        context = make_context()

        assert BindCommand(context).run("Tasks.md", "home")

        assert load_state(state_path).file_configs == {"Tasks.md": "H"}

    def test_bind_unknown_list(self, make_context, capsys):
        assert not BindCommand(make_context()).run("Tasks.md", "Garden")
        assert "Unknown list" in capsys.readouterr().out

    def test_clear_forgets_mappings(self, vault, remote, make_context):
        write_doc(vault, "Tasks.md", "- [ ] Call Bob\n")
        context = make_context()
        context.state.bind_document("Tasks.md", "W")
        SyncCommand(context).run(document="Tasks.md")

        assert ClearCommand(context).run("Tasks.md")

        assert context.state.bound_list_id("Tasks.md") is None
        assert context.mappings.clear_document("Tasks.md") == 0


class TestAuthCommands:

    def test_login_requires_client_id(self, capsys):
        provider = Mock()
        assert not LoginCommand(SyncState(), provider).run()
        provider.login.assert_not_called()
        assert "No client id" in capsys.readouterr().out

    def test_login_stores_client_and_tenant(self):
        state = SyncState()
        provider = Mock()

        assert LoginCommand(state, provider).run(client_id=" abc ", tenant_id="contoso")

        assert state.settings.client_id == "abc"
        assert state.settings.tenant_id == "contoso"
        provider.login.assert_called_once()

    def test_login_failure(self, capsys):
        state = SyncState()
        state.settings.client_id = "abc"
        provider = Mock()
        provider.login.side_effect = AuthenticationFailedError("declined")

        assert not LoginCommand(state, provider).run()
        assert "declined" in capsys.readouterr().out

    def test_logout_when_signed_out(self, capsys):
        provider = Mock()
        provider.is_logged_in.return_value = False

        assert LogoutCommand(SyncState(), provider).run()

        provider.logout.assert_not_called()
        assert "Not signed in" in capsys.readouterr().out


class TestPrintSummary:

    def test_skipped_is_failure(self, capsys):
        assert not print_summary(SyncSummary(document_path="a.md", skipped=True))
        assert "already running" in capsys.readouterr().out

    def test_failures_are_listed(self, capsys):
        summary = SyncSummary(document_path="a.md", created=1, failures=["Buy milk: HTTP 500"])
        assert print_summary(summary)
        out = capsys.readouterr().out
        assert "(1 failed)" in out
        assert "Buy milk: HTTP 500" in out
