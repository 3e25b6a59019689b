"""
LDAP search filters as small composable objects.

Filters render to RFC 4515 text for the ldap3 backend and evaluate directly
against DirectoryRecord objects for the in-memory backend.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from ad_resolver.identity import DirectoryRecord, dn_key, is_distinguished_name

# RFC 4515 requires escaping: * ( ) \ NUL
_ESCAPE_CHARS = {
    '\\': r'\5c',
    '*': r'\2a',
    '(': r'\28',
    ')': r'\29',
    '\x00': r'\00',
}


def escape_value(value: str) -> str:
    """Escape special characters for LDAP search filters."""
    result = str(value)
    for char, escaped in _ESCAPE_CHARS.items():
        result = result.replace(char, escaped)
    return result


def _record_values(record: DirectoryRecord, attr: str) -> List[Any]:
    lowered = attr.lower()
    if lowered == 'objectclass':
        return list(record.object_classes)
    if lowered in ('distinguishedname', 'dn'):
        return [record.distinguished_name]
    if lowered == 'memberof' and record.member_of is not None:
        return list(record.member_of)
    value = record.get(attr)
    return value.as_list() if value is not None else []


def _normalize(attr: str, value: Any) -> str:
    text = str(value)
    if attr.lower() in ('distinguishedname', 'dn', 'memberof', 'member') or is_distinguished_name(text):
        return dn_key(text)
    return text.lower()


class Filter:
    """Base class for filter clauses"""

    def to_ldap(self) -> str:
        raise NotImplementedError

    def matches(self, record: DirectoryRecord) -> bool:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.to_ldap()


@dataclass(frozen=True)
class Eq(Filter):
    attr: str
    value: str

    def to_ldap(self) -> str:
        return f"({self.attr}={escape_value(self.value)})"

    def matches(self, record: DirectoryRecord) -> bool:
        wanted = _normalize(self.attr, self.value)
        return any(_normalize(self.attr, v) == wanted for v in _record_values(record, self.attr))


@dataclass(frozen=True)
class Substring(Filter):
    """Substring match; '*' in the pattern is a wildcard, everything else is literal."""
    attr: str
    pattern: str

    def to_ldap(self) -> str:
        pieces = [escape_value(piece) for piece in self.pattern.split('*')]
        return f"({self.attr}={'*'.join(pieces)})"

    def matches(self, record: DirectoryRecord) -> bool:
        regex = re.compile(
            '^' + '.*'.join(re.escape(piece) for piece in self.pattern.split('*')) + '$',
            re.IGNORECASE | re.DOTALL,
        )
        return any(regex.match(str(v)) for v in _record_values(record, self.attr))


@dataclass(frozen=True)
class Present(Filter):
    attr: str

    def to_ldap(self) -> str:
        return f"({self.attr}=*)"

    def matches(self, record: DirectoryRecord) -> bool:
        return bool(_record_values(record, self.attr))


class And(Filter):
    def __init__(self, *clauses: Filter):
        self.clauses: Tuple[Filter, ...] = tuple(clauses)

    def to_ldap(self) -> str:
        return "(&" + "".join(c.to_ldap() for c in self.clauses) + ")"

    def matches(self, record: DirectoryRecord) -> bool:
        return all(c.matches(record) for c in self.clauses)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, And) and self.clauses == other.clauses

    def __hash__(self) -> int:
        return hash(('and', self.clauses))

    def __repr__(self) -> str:
        return f"And{self.clauses!r}"


class Or(Filter):
    def __init__(self, *clauses: Filter):
        self.clauses: Tuple[Filter, ...] = tuple(clauses)

    def to_ldap(self) -> str:
        return "(|" + "".join(c.to_ldap() for c in self.clauses) + ")"

    def matches(self, record: DirectoryRecord) -> bool:
        return any(c.matches(record) for c in self.clauses)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Or) and self.clauses == other.clauses

    def __hash__(self) -> int:
        return hash(('or', self.clauses))

    def __repr__(self) -> str:
        return f"Or{self.clauses!r}"


@dataclass(frozen=True)
class Not(Filter):
    clause: Filter

    def to_ldap(self) -> str:
        return f"(!{self.clause.to_ldap()})"

    def matches(self, record: DirectoryRecord) -> bool:
        return not self.clause.matches(record)


def any_of_classes(classes: Iterable[str]) -> Filter:
    clauses = [Eq('objectClass', oc) for oc in classes]
    return clauses[0] if len(clauses) == 1 else Or(*clauses)


def user_or_principal(sam_account_name: str, user_principal_name: Optional[str] = None) -> Filter:
    """OR-filter across the identifier fields a lookup key may match."""
    upn = user_principal_name or sam_account_name
    return And(
        any_of_classes(('user', 'computer')),
        Or(Eq('sAMAccountName', sam_account_name), Eq('userPrincipalName', upn)),
    )


def group_named(name: str) -> Filter:
    return And(Eq('objectClass', 'group'), Or(Eq('sAMAccountName', name), Eq('cn', name)))


def direct_members(group_dn: str, object_classes: Iterable[str]) -> Filter:
    """Objects of the given classes whose memberOf lists the group directly."""
    return And(any_of_classes(object_classes), Eq('memberOf', group_dn))
