"""Post-resolution filtering of identity lists."""

from typing import Any, Callable, Iterable, List, Optional

from ad_resolver.identity import Identity, dn_key

Predicate = Callable[[Identity], bool]


def dedupe_by_dn(identities: Iterable[Identity]) -> List[Identity]:
    """Drop later duplicates of the same distinguished name, keeping order."""
    seen = set()
    unique: List[Identity] = []
    for identity in identities:
        key = identity.dn_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(identity)
    return unique


def filter_identities(
    identities: Iterable[Identity],
    predicate: Optional[Predicate] = None,
    include_disabled: bool = False,
) -> List[Identity]:
    """
    Keep enabled identities (unless include_disabled) that satisfy predicate.

    The enabled check runs before the predicate.
    """
    result: List[Identity] = []
    for identity in identities:
        if not include_disabled and not identity.enabled:
            continue
        if predicate is not None and not predicate(identity):
            continue
        result.append(identity)
    return result


def under_ou(ou_dn: str) -> Predicate:
    """Match identities whose DN sits below the given OU path."""
    suffix = dn_key(ou_dn)

    def predicate(identity: Identity) -> bool:
        dn = identity.dn_key
        return dn != suffix and dn.endswith(',' + suffix)

    return predicate


def attribute_equals(name: str, value: Any) -> Predicate:
    """Match identities where any value of the attribute equals value (case-insensitive for strings)."""
    wanted = value.lower() if isinstance(value, str) else value

    def predicate(identity: Identity) -> bool:
        for candidate in identity.values(name):
            if isinstance(candidate, str):
                candidate = candidate.lower()
            if candidate == wanted:
                return True
        return False

    return predicate


def attribute_present(name: str) -> Predicate:
    def predicate(identity: Identity) -> bool:
        return any(v not in (None, "") for v in identity.values(name))

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    def predicate(identity: Identity) -> bool:
        return all(p(identity) for p in predicates)

    return predicate
