#!/usr/bin/env python3
"""
docaccess - Command Line Interface

Usage:
    docaccess init-db
    docaccess verify
    docaccess rebuild [--workspace ID]
    docaccess resolve <user_id> <page_id>
"""
import argparse
import json
import logging
import sys

from docaccess.core.database import SessionLocal, atomic, init_db
from docaccess.core.errors import DocAccessError
from docaccess.core.logging_config import configure_logging
from docaccess.models import resolved
from docaccess.services.group_membership import GroupMembershipService
from docaccess.services.invariants import (
    verify_group_closure, verify_group_membership, verify_page_closure
)
from docaccess.services.page_tree import PageTreeService
from docaccess.services.permissions import PermissionService


LOGGER = logging.getLogger(__name__)


def print_json(data, indent=2):
    """Pretty print JSON data"""
    print(json.dumps(data, indent=indent, ensure_ascii=False, default=str))


def cmd_init_db(args, session_factory):
    """Create all tables"""
    init_db(session_factory.kw['bind'])
    print_json({'status': 'ok'})
    return 0


def cmd_verify(args, session_factory):
    """Compare every derived index with its source edges"""
    db = session_factory()
    try:
        problems = {
            'pages': verify_page_closure(db),
            'group_paths': verify_group_closure(db),
            'group_membership': verify_group_membership(db),
        }
    finally:
        db.close()

    ok = not any(problems.values())
    print_json({'ok': ok, 'problems': problems})
    return 0 if ok else 1


def cmd_rebuild(args, session_factory):
    """Recompute the closure tables from adjacency and group_members"""
    db = session_factory()
    try:
        with atomic(db):
            page_rows = PageTreeService(db).rebuild_paths(args.workspace)
            group_counts = {} if args.pages_only else GroupMembershipService(db).rebuild_all()
    finally:
        db.close()

    print_json({'page_paths': page_rows, **group_counts})
    return 0


def cmd_resolve(args, session_factory):
    """Resolve one user's effective permission on one page"""
    service = PermissionService(session_factory=session_factory)
    result = service.resolve(args.user_id, args.page_id, use_cache=False)
    print_json(resolved.to_dict(result))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='docaccess',
        description='Page permission index maintenance'
    )
    parser.add_argument('--log-level', default=None, help='Override DOCACCESS_LOG_LEVEL')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    subparsers.add_parser('init-db', help='Create database tables')
    subparsers.add_parser('verify', help='Check closure tables against source data')

    rebuild_parser = subparsers.add_parser('rebuild', help='Rebuild closure tables')
    rebuild_parser.add_argument('--workspace', type=int, default=None, help='Limit page rebuild to one workspace')
    rebuild_parser.add_argument('--pages-only', action='store_true', help='Skip the group indexes')

    resolve_parser = subparsers.add_parser('resolve', help='Resolve effective permission')
    resolve_parser.add_argument('user_id', type=int, help='User ID')
    resolve_parser.add_argument('page_id', type=int, help='Page ID')

    return parser


COMMANDS = {
    'init-db': cmd_init_db,
    'verify': cmd_verify,
    'rebuild': cmd_rebuild,
    'resolve': cmd_resolve,
}


def main(argv=None, session_factory=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.log_level)
    session_factory = session_factory or SessionLocal

    try:
        return COMMANDS[args.command](args, session_factory)
    except DocAccessError as e:
        LOGGER.error("%s failed: %s", args.command, e.message)
        print_json({'error': e.message})
        return 1


if __name__ == '__main__':
    sys.exit(main())
