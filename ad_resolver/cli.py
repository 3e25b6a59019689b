"""
Command-line entry point for scheduled tasks.

Usage:
    ad-resolver members "Win11-Upgrade-Wave1" "Lab-PCs" --attribute mail --under-ou "OU=Staff,DC=dept,DC=example,DC=edu"
    ad-resolver lookup jsmith DEPT\\mdoe --domain-suffix dept.example.edu
    ad-resolver --snapshot directory.json members AllStaff

Configuration comes from AD_RESOLVER_* environment variables (see config.py).
Output is one JSON object per identity on stdout; logs go to stderr and, if
AD_RESOLVER_LOG_DIR is set, to a dated log file.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional, Sequence, TextIO

from ad_resolver.cache import IdentityCache
from ad_resolver.config import settings
from ad_resolver.directory import DirectoryService
from ad_resolver.errors import DirectoryError, DirectoryUnavailable
from ad_resolver.filters import dedupe_by_dn, filter_identities, under_ou
from ad_resolver.identity import Identity
from ad_resolver.ldap_directory import LdapDirectory
from ad_resolver.log import configure_logging
from ad_resolver.memory import InMemoryDirectory
from ad_resolver.report import RunSummary
from ad_resolver.resolver import GroupMembershipResolver

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ad-resolver",
        description="Resolve directory groups and identities",
    )
    parser.add_argument("--snapshot", help="Use a JSON directory snapshot instead of LDAP")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    parser.add_argument("--log-dir", default=settings.log_dir, help="Directory for dated log files")

    sub = parser.add_subparsers(dest="command", required=True)

    members = sub.add_parser("members", help="List the members of one or more groups")
    members.add_argument("groups", nargs="+", help="Group names or distinguished names")
    members.add_argument("--attribute", "-a", action="append", default=[], dest="attributes",
                         help="Extra attribute to fetch (repeatable)")
    members.add_argument("--include-disabled", action="store_true", help="Keep disabled accounts")
    members.add_argument("--no-recursive", action="store_false", dest="recursive",
                         help="Only direct members, do not expand nested groups")
    members.add_argument("--under-ou", help="Only identities below this OU distinguished name")

    lookup = sub.add_parser("lookup", help="Resolve user or computer keys")
    lookup.add_argument("keys", nargs="+", help="sAMAccountName, UPN, DOMAIN\\user or DN")
    lookup.add_argument("--domain-suffix", default=settings.domain_suffix,
                        help="Suffix appended to bare usernames")
    lookup.add_argument("--attribute", "-a", action="append", default=[], dest="attributes",
                        help="Extra attribute to fetch (repeatable)")

    return parser


def open_directory(snapshot: Optional[str]) -> DirectoryService:
    if snapshot:
        return InMemoryDirectory.from_json(snapshot)
    return LdapDirectory.from_settings(settings)


def write_identity(identity: Identity, out: TextIO) -> None:
    out.write(json.dumps(identity.flatten(), default=str, sort_keys=True) + "\n")


def run_members(args: argparse.Namespace, directory: DirectoryService, out: TextIO) -> RunSummary:
    summary = RunSummary(name="members")
    resolver = GroupMembershipResolver(directory, max_depth=settings.max_recursion_depth)
    found: List[Identity] = []

    for group in args.groups:
        try:
            members = resolver.resolve(
                [group],
                attributes=args.attributes,
                recursive=args.recursive,
                include_disabled=args.include_disabled,
            )
        except DirectoryUnavailable as e:
            # Systemic failure: stop instead of reporting partial results
            summary.record_error(e, context=group)
            return summary
        except (DirectoryError, ValueError) as e:
            summary.record_error(e, context=group)
            continue
        summary.record_success()
        found.extend(members)

    predicate = under_ou(args.under_ou) if args.under_ou else None
    result = filter_identities(dedupe_by_dn(found), predicate=predicate, include_disabled=True)
    for identity in result:
        write_identity(identity, out)
    summary.identities = len(result)
    return summary


def run_lookup(args: argparse.Namespace, directory: DirectoryService, out: TextIO) -> RunSummary:
    summary = RunSummary(name="lookup")
    cache = IdentityCache(directory, domain_suffix=args.domain_suffix)

    for key in args.keys:
        try:
            identity = cache.get(key, attributes=args.attributes)
        except DirectoryUnavailable as e:
            summary.record_error(e, context=key)
            return summary
        except (DirectoryError, ValueError) as e:
            summary.record_error(e, context=key)
            continue
        summary.record_success(identities=1)
        write_identity(identity, out)

    return summary


def main(argv: Optional[Sequence[str]] = None, out: TextIO = sys.stdout) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_dir)

    try:
        directory = open_directory(args.snapshot)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"[RUN] Cannot load directory snapshot {args.snapshot}: {e}")
        return 2

    try:
        if args.command == "members":
            summary = run_members(args, directory, out)
        else:
            summary = run_lookup(args, directory, out)
    finally:
        if isinstance(directory, LdapDirectory):
            directory.close()

    summary.log_summary()
    return summary.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
