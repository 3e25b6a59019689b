"""
Identity Model for Directory Group Resolution

This module defines the records that flow between the directory backends,
the identity cache and the group membership resolver:
- Attribute values as a tagged union (single value or multi-value list)
- Raw directory records as returned by a backend
- Resolved identities (user or computer) keyed by their lookup key

Supports lookup keys in the formats the calling scripts use:
- Bare username: jsmith
- UPN format: jsmith@dept.example.edu
- NT-style format: DEPT\\jsmith
- Distinguished name: CN=John Smith,OU=Staff,DC=dept,DC=example,DC=edu
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ACCOUNTDISABLE flag in userAccountControl
UAC_ACCOUNT_DISABLED = 0x0002

# attr=value with an attribute type we recognise as an RDN
_RDN_PATTERN = re.compile(r'^\s*(cn|ou|dc|uid|o|c|l|st)\s*=\s*[^,]+', re.IGNORECASE)


class KeyFormat(Enum):
    """Format in which a lookup key was provided"""
    BARE = "bare"                           # "jsmith"
    UPN = "upn"                             # "jsmith@dept.example.edu"
    NT_STYLE = "nt_style"                   # "DEPT\jsmith"
    DISTINGUISHED_NAME = "distinguished_name"


@dataclass(frozen=True)
class SingleValue:
    """Attribute holding exactly one value"""
    value: Any

    def first(self) -> Any:
        return self.value

    def as_list(self) -> List[Any]:
        return [self.value]


@dataclass(frozen=True)
class MultiValue:
    """Attribute holding a list of values (serialNumber, memberOf, ...)"""
    values: Tuple[Any, ...] = ()

    def first(self) -> Any:
        # First value wins when a consumer needs a single value
        return self.values[0] if self.values else None

    def as_list(self) -> List[Any]:
        return list(self.values)


AttributeValue = Union[SingleValue, MultiValue]


def to_attribute_value(raw: Any) -> AttributeValue:
    """Wrap a raw backend value: lists become MultiValue, scalars SingleValue."""
    if isinstance(raw, (SingleValue, MultiValue)):
        return raw
    if isinstance(raw, (list, tuple, set, frozenset)):
        return MultiValue(tuple(raw))
    return SingleValue(raw)


def dn_key(dn: str) -> str:
    """Canonical comparison form of a distinguished name."""
    return ','.join(part.strip() for part in dn.split(',')).lower()


def is_distinguished_name(key: str) -> bool:
    """Return True if the key looks like a DN (CN=...,OU=...,DC=...)."""
    if '=' not in key:
        return False
    parts = [p for p in re.split(r'(?<!\\),', key) if p.strip()]
    return bool(parts) and all(_RDN_PATTERN.match(p) for p in parts)


def classify_key(key: str) -> KeyFormat:
    """
    Detect the format of a lookup key.

    Raises:
        ValueError: If the key is empty
    """
    if not key or not key.strip():
        raise ValueError("Lookup key must not be empty")

    key = key.strip()
    if is_distinguished_name(key):
        return KeyFormat.DISTINGUISHED_NAME
    if '\\' in key:
        return KeyFormat.NT_STYLE
    if '@' in key:
        return KeyFormat.UPN
    return KeyFormat.BARE


def split_nt_style(key: str) -> Tuple[str, str]:
    """Split DOMAIN\\user into (domain, user)."""
    domain, _, username = key.partition('\\')
    return domain, username


def _find_attribute(attributes: Dict[str, AttributeValue], name: str) -> Optional[AttributeValue]:
    if name in attributes:
        return attributes[name]
    lowered = name.lower()
    for attr_name, value in attributes.items():
        if attr_name.lower() == lowered:
            return value
    return None


@dataclass
class DirectoryRecord:
    """A user, computer or group object as returned by a directory backend"""
    distinguished_name: str
    enabled: bool = True
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    member_of: Optional[List[str]] = None     # None: memberOf was not fetched
    object_classes: List[str] = field(default_factory=list)

    def get(self, name: str) -> Optional[AttributeValue]:
        return _find_attribute(self.attributes, name)

    @property
    def is_group(self) -> bool:
        return any(oc.lower() == 'group' for oc in self.object_classes)


@dataclass
class Identity:
    """Resolved user or computer identity"""
    key: str
    distinguished_name: str
    enabled: bool = True
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    member_of: Optional[List[str]] = None
    object_classes: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: DirectoryRecord, key: Optional[str] = None) -> "Identity":
        return cls(
            key=key or record.distinguished_name,
            distinguished_name=record.distinguished_name,
            enabled=record.enabled,
            attributes=dict(record.attributes),
            member_of=list(record.member_of) if record.member_of is not None else None,
            object_classes=list(record.object_classes),
        )

    def get(self, name: str) -> Optional[AttributeValue]:
        """Case-insensitive attribute lookup."""
        return _find_attribute(self.attributes, name)

    def first(self, name: str, default: Any = None) -> Any:
        """Flatten an attribute to a single value (first value wins)."""
        value = self.get(name)
        if value is None:
            return default
        flattened = value.first()
        return default if flattened is None else flattened

    def values(self, name: str) -> List[Any]:
        value = self.get(name)
        return value.as_list() if value is not None else []

    @property
    def is_group(self) -> bool:
        return any(oc.lower() == 'group' for oc in self.object_classes)

    @property
    def attributes_complete(self) -> bool:
        """True once the full attribute set (including memberOf) was fetched."""
        return self.member_of is not None

    @property
    def dn_key(self) -> str:
        return dn_key(self.distinguished_name)

    def flatten(self) -> Dict[str, Any]:
        """Plain dict with every attribute flattened, for reports and output."""
        result: Dict[str, Any] = {
            "key": self.key,
            "dn": self.distinguished_name,
            "enabled": self.enabled,
        }
        for name, value in self.attributes.items():
            if name.lower() == 'memberof':
                continue
            result[name] = value.first()
        return result

    def __str__(self) -> str:
        return self.distinguished_name


def enabled_from_uac(uac: Any) -> bool:
    """Derive the enabled flag from a userAccountControl value."""
    if uac is None:
        return True
    try:
        return not (int(uac) & UAC_ACCOUNT_DISABLED)
    except (TypeError, ValueError):
        return True
