"""
Group Membership Resolver
=========================
Expands directory groups into a flat, de-duplicated list of member identities.

Each group is first enumerated with the server's recursive membership
primitive (fast path). When that primitive times out, which happens on large
or deeply nested groups, the resolver walks the nesting itself (slow path):
- resolve the group object to its DN
- one query for directly contained users/computers (minimal attributes)
- one query for directly contained groups
- recurse into each nested group, fast path first, with depth + 1

Members found through the slow path lack memberOf and are backfilled through
the IdentityCache once per distinguished name, after de-duplication.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Union

from ad_resolver.cache import DEFAULT_ATTRIBUTES, IdentityCache, merge_attributes
from ad_resolver.directory import DirectoryService, MembersFound, MembershipTimedOut
from ad_resolver.errors import AmbiguousMatch, NotFound, RecursionLimitExceeded
from ad_resolver.filters import dedupe_by_dn, filter_identities
from ad_resolver.identity import (
    DirectoryRecord,
    Identity,
    KeyFormat,
    classify_key,
)
from ad_resolver.ldap_filter import direct_members, group_named

logger = logging.getLogger(__name__)

MAX_RECURSION_DEPTH = 20

# Attributes fetched per member on the slow path; the rest comes from backfill
SLOW_PATH_ATTRIBUTES = ("sAMAccountName", "userAccountControl")

MEMBER_CLASSES = ("user", "computer")


class GroupMembershipResolver:
    """Resolves groups to member identities through a DirectoryService"""

    def __init__(
        self,
        directory: DirectoryService,
        cache: Optional[IdentityCache] = None,
        max_depth: int = MAX_RECURSION_DEPTH,
    ):
        self.directory = directory
        self.cache = cache if cache is not None else IdentityCache(directory)
        self.max_depth = max_depth
        self.slow_path_groups: List[str] = []

    def resolve(
        self,
        groups: Union[str, Iterable[str]],
        attributes: Sequence[str] = (),
        recursive: bool = True,
        include_disabled: bool = False,
    ) -> List[Identity]:
        """
        Resolve one or more groups to their member identities.

        Args:
            groups: Group names or distinguished names, processed in order
            attributes: Attributes wanted on every returned identity
            recursive: Expand nested groups
            include_disabled: Keep identities whose account is disabled

        Returns:
            Identities in first-discovery order, unique by DN

        Raises:
            NotFound / AmbiguousMatch: A group could not be resolved
            RecursionLimitExceeded: Nesting deeper than max_depth (cyclic groups)
            DirectoryTimeout, DirectoryUnavailable: Propagated, never retried
        """
        if isinstance(groups, str):
            groups = [groups]

        wanted = merge_attributes(DEFAULT_ATTRIBUTES, attributes)
        collected: List[Identity] = []

        for group in groups:
            if not group or not group.strip():
                raise ValueError("Group identifier must not be empty")
            logger.info(f"[RESOLVER] Resolving group {group} (recursive={recursive})")
            members = self._collect(group.strip(), wanted, recursive, depth=0)
            logger.info(f"[RESOLVER] Group {group}: {len(members)} member occurrence(s)")
            collected.extend(members)

        unique = dedupe_by_dn(collected)
        if len(unique) != len(collected):
            logger.debug(f"[RESOLVER] Collapsed {len(collected) - len(unique)} duplicate member(s)")

        complete = [self._backfill(identity, wanted) for identity in unique]
        result = filter_identities(complete, include_disabled=include_disabled)

        logger.info(
            f"[RESOLVER] Resolved {len(result)} identit{'y' if len(result) == 1 else 'ies'} "
            f"({len(complete) - len(result)} disabled dropped)"
        )
        return result

    def resolve_one(self, group: str, **kwargs) -> List[Identity]:
        return self.resolve([group], **kwargs)

    def _collect(self, group: str, attributes: Sequence[str], recursive: bool, depth: int) -> List[Identity]:
        if depth > self.max_depth:
            raise RecursionLimitExceeded(group, depth, self.max_depth)

        outcome = self.directory.get_group_members(group, recursive=recursive, attributes=attributes)

        if isinstance(outcome, MembersFound):
            return self._identities_from(outcome.records, attributes)

        if isinstance(outcome, MembershipTimedOut):
            logger.warning(
                f"[RESOLVER] Recursive enumeration of {group} timed out ({outcome.reason}); "
                f"expanding manually at depth {depth}"
            )
            self.slow_path_groups.append(group)
            return self._collect_manually(group, attributes, recursive, depth)

        raise TypeError(f"Unexpected membership result for {group}: {outcome!r}")

    def _collect_manually(self, group: str, attributes: Sequence[str], recursive: bool, depth: int) -> List[Identity]:
        group_dn = self._group_dn(group)

        records = self.directory.find(direct_members(group_dn, MEMBER_CLASSES), SLOW_PATH_ATTRIBUTES)
        members = [Identity.from_record(r) for r in records if not r.is_group]
        logger.debug(f"[RESOLVER] {group_dn}: {len(members)} direct member(s)")

        if not recursive:
            return members

        nested = self.directory.find(direct_members(group_dn, ("group",)), ("cn",))
        for nested_group in nested:
            logger.debug(f"[RESOLVER] {group_dn}: descending into {nested_group.distinguished_name}")
            members.extend(
                self._collect(nested_group.distinguished_name, attributes, recursive, depth + 1)
            )
        return members

    def _group_dn(self, group: str) -> str:
        if classify_key(group) == KeyFormat.DISTINGUISHED_NAME:
            return self.directory.get_by_dn(group, ("cn",)).distinguished_name

        matches = self.directory.find(group_named(group), ("cn",))
        if not matches:
            raise NotFound(f"No group named '{group}'", key=group)
        if len(matches) > 1:
            raise AmbiguousMatch(group, [m.distinguished_name for m in matches])
        return matches[0].distinguished_name

    def _identities_from(self, records: Iterable[DirectoryRecord], attributes: Sequence[str]) -> List[Identity]:
        identities = []
        for record in records:
            if record.is_group:
                continue
            identity = Identity.from_record(record)
            if identity.attributes_complete:
                # Seed only; callers get the fresh identity
                self.cache.store(identity, attributes)
            identities.append(identity)
        return identities

    def _backfill(self, identity: Identity, attributes: Sequence[str]) -> Identity:
        if identity.attributes_complete:
            return identity
        return self.cache.get(identity.distinguished_name, attributes=attributes)
