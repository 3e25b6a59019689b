"""
Identity Cache

Memoizing lookup from a user key (sAMAccountName, UPN, NT-style name or
distinguished name) to a resolved Identity. One cache lives for one script
run: entries are only ever added, never evicted or replaced, since directory
state is assumed not to change mid-run. A request for attributes an entry was
not fetched with goes back to the directory without touching the entry.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ad_resolver.directory import DirectoryService
from ad_resolver.errors import AmbiguousMatch, NotFound
from ad_resolver.identity import Identity, KeyFormat, classify_key, dn_key, split_nt_style
from ad_resolver.ldap_filter import user_or_principal

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTES = (
    "sAMAccountName",
    "userPrincipalName",
    "mail",
    "displayName",
    "userAccountControl",
    "memberOf",
)


def merge_attributes(*groups: Iterable[str]) -> List[str]:
    """Merge attribute lists, case-insensitively de-duplicated, order kept."""
    merged: List[str] = []
    seen = set()
    for group in groups:
        for attr in group:
            if attr.lower() not in seen:
                seen.add(attr.lower())
                merged.append(attr)
    return merged


class IdentityCache:
    """Per-run identity lookup cache in front of a DirectoryService"""

    def __init__(self, directory: DirectoryService, domain_suffix: Optional[str] = None):
        self.directory = directory
        self.domain_suffix = domain_suffix
        self._entries: Dict[str, Identity] = {}
        # Attribute names (lower-cased) each entry was fetched with, by DN key
        self._fetched: Dict[str, Set[str]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len({id(identity) for identity in self._entries.values()})

    def __contains__(self, key: str) -> bool:
        return self._cache_key(key) in self._entries

    @staticmethod
    def _cache_key(key: str) -> str:
        key = key.strip()
        if classify_key(key) == KeyFormat.DISTINGUISHED_NAME:
            return dn_key(key)
        return key.lower()

    def resolve_key(self, key: str, domain_suffix: Optional[str] = None) -> str:
        """
        Return the key the directory will be asked for.

        Bare usernames get the domain suffix appended; keys that already carry
        a domain (UPN) or are distinguished names are returned unchanged.
        """
        key = key.strip()
        suffix = domain_suffix or self.domain_suffix
        fmt = classify_key(key)
        if fmt == KeyFormat.BARE and suffix:
            return f"{key}@{suffix.lstrip('@')}"
        return key

    def get(self, key: str, domain_suffix: Optional[str] = None, attributes: Sequence[str] = ()) -> Identity:
        """
        Look up an identity, querying the directory at most once per key.

        A cached entry that was fetched without some of the requested
        attributes is fetched again by DN; the fresh identity is returned but
        the cached entry is left as it was.

        Args:
            key: sAMAccountName, UPN, DOMAIN\\user or distinguished name
            domain_suffix: Overrides the cache's default suffix for bare keys
            attributes: Extra attributes to fetch on a miss

        Raises:
            NotFound: No object matched
            AmbiguousMatch: More than one object matched a non-DN key
            DirectoryTimeout, DirectoryUnavailable: Propagated from the directory
        """
        resolved = self.resolve_key(key, domain_suffix)
        wanted = merge_attributes(DEFAULT_ATTRIBUTES, attributes)

        for candidate in (key, resolved):
            cached = self._entries.get(self._cache_key(candidate))
            if cached is not None:
                missing = self._missing_attributes(cached, wanted)
                if not missing:
                    self.hits += 1
                    logger.debug(f"[CACHE] Hit for {key}")
                    return cached
                self.misses += 1
                logger.debug(f"[CACHE] {key} cached without {', '.join(missing)}, refetching by DN")
                record = self.directory.get_by_dn(cached.distinguished_name, wanted)
                return Identity.from_record(record, key=key)

        self.misses += 1
        fmt = classify_key(resolved)

        if fmt == KeyFormat.DISTINGUISHED_NAME:
            logger.debug(f"[CACHE] Miss for {key}, fetching by DN")
            record = self.directory.get_by_dn(resolved, wanted)
        else:
            suffix = domain_suffix or self.domain_suffix
            original_fmt = classify_key(key)
            if original_fmt == KeyFormat.NT_STYLE:
                _, sam = split_nt_style(key.strip())
                upn = f"{sam}@{suffix.lstrip('@')}" if suffix else sam
            elif original_fmt == KeyFormat.BARE:
                sam = key.strip()
                upn = resolved
            else:
                sam = upn = resolved
            search_filter = user_or_principal(sam, upn)
            logger.debug(f"[CACHE] Miss for {key}, searching {search_filter}")
            records = self.directory.find(search_filter, wanted)

            if not records:
                raise NotFound(f"No directory object matches '{key}'", key=key)
            if len(records) > 1:
                raise AmbiguousMatch(key, [r.distinguished_name for r in records])
            record = records[0]

        # Same object reached through a different key: reuse the first entry
        identity = self._entries.get(dn_key(record.distinguished_name))
        if identity is None:
            identity = Identity.from_record(record, key=key)
            self.store(identity, wanted)
        self._entries.setdefault(self._cache_key(key), identity)

        # The suffixed form only answers for the object that actually owns it
        if self._cache_key(resolved) != self._cache_key(key):
            upn_value = identity.first("userPrincipalName")
            if upn_value is not None and str(upn_value).lower() == resolved.lower():
                self._entries.setdefault(self._cache_key(resolved), identity)

        if self._missing_attributes(identity, wanted):
            return Identity.from_record(record, key=key)
        return identity

    def store(self, identity: Identity, attributes: Sequence[str] = ()) -> Identity:
        """
        Seed the cache with an identity obtained elsewhere (keyed by its DN).

        Existing entries win; the cache is append-only.
        """
        key = dn_key(identity.distinguished_name)
        if key not in self._entries:
            self._entries[key] = identity
            self._fetched[key] = {a.lower() for a in attributes}
        return self._entries[key]

    def identities(self) -> List[Identity]:
        unique: Dict[int, Identity] = {}
        for identity in self._entries.values():
            unique.setdefault(id(identity), identity)
        return list(unique.values())

    def _missing_attributes(self, identity: Identity, wanted: Sequence[str]) -> List[str]:
        fetched = self._fetched.get(dn_key(identity.distinguished_name), set())
        return [a for a in wanted if a.lower() not in fetched]
