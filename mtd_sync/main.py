#!/usr/bin/env python3
"""
mtd-sync - bidirectional task sync between markdown documents and Microsoft To Do.
"""

import argparse
import logging
import os
import sys

import requests

from mtd_sync.core.config import SyncState, load_state, save_state, get_default_state_path
from mtd_sync.markdown.vault import DocumentStore
from mtd_sync.sync.context import SyncContext
from mtd_sync.todo.auth import TokenProvider
from mtd_sync.todo.gateway import GraphClient
from mtd_sync.commands import (
    SyncCommand,
    PushCommand,
    RouteCommand,
    ClearCommand,
    LoginCommand,
    LogoutCommand,
    ListsCommand,
    BindCommand,
    WatchCommand,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mtd-sync",
        description="Bidirectional task sync between markdown documents and Microsoft To Do",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mtd-sync login --client-id <id>     # Sign in with a device code
  mtd-sync lists                      # Show Microsoft To Do lists
  mtd-sync bind Tasks.md "Work"       # Bind a document to a list
  mtd-sync sync Tasks.md              # Two-way sync one document
  mtd-sync sync --all                 # Sync every bound document
  mtd-sync route                      # Create/move tagged tasks vault-wide
  mtd-sync watch                      # Push edits as you type, sync on a timer
        """
    )

    default_state = get_default_state_path()

    parser.add_argument(
        '--state',
        help=f'Path to the state file (default: {default_state})',
        default=None
    )
    parser.add_argument(
        '--vault',
        help='Root directory of the markdown documents (default: vaultPath setting, else the current directory)',
        default=None
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    sync_parser = subparsers.add_parser('sync', help='Two-way sync a document with its lists')
    sync_parser.add_argument('document', nargs='?', help='Document to sync (default: centralFile setting)')
    sync_parser.add_argument(
        '--all',
        action='store_true',
        dest='all_documents',
        help='Sync every bound document'
    )

    push_parser = subparsers.add_parser('push', help='Push local edits and deletions only')
    push_parser.add_argument('document', help='Document to push')

    subparsers.add_parser('route', help='Create or move tagged tasks across the vault')

    watch_parser = subparsers.add_parser('watch', help='Watch bound documents and sync continuously')
    watch_parser.add_argument(
        '--poll-interval',
        type=float,
        default=1.0,
        help='Seconds between document checks'
    )
    watch_parser.add_argument(
        '--no-initial-sync',
        action='store_true',
        help='Skip the full sync on startup'
    )

    login_parser = subparsers.add_parser('login', help='Sign in to Microsoft To Do')
    login_parser.add_argument('--client-id', default='', help='Azure app registration (client) id')
    login_parser.add_argument('--tenant', default='', help='Tenant id (default: common)')

    subparsers.add_parser('logout', help='Forget stored tokens')
    subparsers.add_parser('lists', help='Show Microsoft To Do lists')

    bind_parser = subparsers.add_parser('bind', help='Bind a document to a list')
    bind_parser.add_argument('document', help='Document to bind')
    bind_parser.add_argument('list', help='List display name or id')

    clear_parser = subparsers.add_parser('clear', help='Forget the sync state of a document')
    clear_parser.add_argument('document', help='Document to clear')

    return parser


def build_context(state: SyncState, state_path, vault=None, session=None) -> SyncContext:
    """Wire the token provider, remote client and document store around ``state``."""
    session = session or requests.Session()
    provider = TokenProvider(
        state.settings,
        session=session,
        save_callback=lambda: save_state(state, state_path),
    )
    client = GraphClient(provider, session=session)
    root = vault or state.settings.vault_path or os.getcwd()
    return SyncContext(state, client, DocumentStore(root), state_path=state_path)


def main(argv=None):
    """Main entry point for mtd-sync."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if not args.command:
        parser.print_help()
        return 1

    state = load_state(args.state)

    if args.verbose:
        print(f"Using state: {args.state or get_default_state_path()}")

    try:
        context = build_context(state, args.state, args.vault)
        provider = context.client.token_provider

        if args.command == 'sync':
            cmd = SyncCommand(context, verbose=args.verbose)
            success = cmd.run(document=args.document, all_documents=args.all_documents)

        elif args.command == 'push':
            cmd = PushCommand(context, verbose=args.verbose)
            success = cmd.run(args.document)

        elif args.command == 'route':
            cmd = RouteCommand(context, verbose=args.verbose)
            success = cmd.run()

        elif args.command == 'watch':
            cmd = WatchCommand(context, verbose=args.verbose)
            success = cmd.run(poll_interval=args.poll_interval, initial_sync=not args.no_initial_sync)

        elif args.command == 'login':
            cmd = LoginCommand(state, provider, verbose=args.verbose)
            success = cmd.run(client_id=args.client_id, tenant_id=args.tenant)
            if success:
                save_state(state, args.state)

        elif args.command == 'logout':
            cmd = LogoutCommand(state, provider, verbose=args.verbose)
            success = cmd.run()

        elif args.command == 'lists':
            cmd = ListsCommand(context, verbose=args.verbose)
            success = cmd.run()

        elif args.command == 'bind':
            cmd = BindCommand(context, verbose=args.verbose)
            success = cmd.run(args.document, args.list)

        elif args.command == 'clear':
            cmd = ClearCommand(context, verbose=args.verbose)
            success = cmd.run(args.document)

        else:
            print(f"Unknown command '{args.command}'.")
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        if not args.verbose:
            print("Re-run with --verbose for more detail.")
        else:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
