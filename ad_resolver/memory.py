"""
In-memory directory backend.

Holds a snapshot of users, computers and groups. Used for offline dry runs
(snapshots exported to JSON) and as the directory in unit tests. Group
membership is stored the way Active Directory exposes it: as memberOf on the
member object.

Snapshot JSON layout:
    {
      "objects": [
        {"dn": "CN=Alice,OU=Staff,DC=dept,DC=example,DC=edu",
         "objectClass": ["top", "person", "organizationalPerson", "user"],
         "enabled": true,
         "attributes": {"sAMAccountName": "alice", "mail": "alice@dept.example.edu"},
         "memberOf": ["CN=AllStaff,OU=Groups,DC=dept,DC=example,DC=edu"]}
      ],
      "fastPathTimeouts": ["AllStaff"]
    }
"""

import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ad_resolver.directory import DirectoryService, MembersFound, MembershipResult, MembershipTimedOut
from ad_resolver.errors import AmbiguousMatch, NotFound
from ad_resolver.identity import (
    DirectoryRecord,
    KeyFormat,
    SingleValue,
    classify_key,
    dn_key,
    to_attribute_value,
)
from ad_resolver.ldap_filter import Filter, group_named

logger = logging.getLogger(__name__)

USER_CLASSES = ["top", "person", "organizationalPerson", "user"]
COMPUTER_CLASSES = USER_CLASSES + ["computer"]
GROUP_CLASSES = ["top", "group"]


class InMemoryDirectory(DirectoryService):
    """DirectoryService over an in-memory snapshot"""

    def __init__(self, fast_path_timeouts: Optional[Iterable[str]] = None):
        self._objects: "OrderedDict[str, DirectoryRecord]" = OrderedDict()
        # Group names or DNs whose recursive enumeration reports a timeout; "*" for all
        self.fast_path_timeouts: Set[str] = {t.lower() for t in (fast_path_timeouts or [])}

    # ------------------------------------------------------------------
    # Snapshot construction
    # ------------------------------------------------------------------

    def add_object(
        self,
        dn: str,
        object_classes: Sequence[str],
        attributes: Optional[Dict[str, Any]] = None,
        enabled: bool = True,
        member_of: Optional[Iterable[str]] = None,
    ) -> DirectoryRecord:
        attrs = {name: to_attribute_value(value) for name, value in (attributes or {}).items()}
        if not any(name.lower() == 'cn' for name in attrs):
            attrs['cn'] = SingleValue(dn.split(',', 1)[0].split('=', 1)[-1])
        record = DirectoryRecord(
            distinguished_name=dn,
            enabled=enabled,
            attributes=attrs,
            member_of=list(member_of or []),
            object_classes=list(object_classes),
        )
        self._objects[dn_key(dn)] = record
        return record

    def add_user(self, dn: str, sam_account_name: Optional[str] = None, enabled: bool = True,
                 member_of: Optional[Iterable[str]] = None, **attributes: Any) -> DirectoryRecord:
        attrs: Dict[str, Any] = {"sAMAccountName": sam_account_name or dn.split(',', 1)[0].split('=', 1)[-1].lower()}
        attrs.update(attributes)
        attrs.setdefault("userAccountControl", 512 if enabled else 514)
        return self.add_object(dn, USER_CLASSES, attrs, enabled=enabled, member_of=member_of)

    def add_computer(self, dn: str, sam_account_name: Optional[str] = None, enabled: bool = True,
                     member_of: Optional[Iterable[str]] = None, **attributes: Any) -> DirectoryRecord:
        name = dn.split(',', 1)[0].split('=', 1)[-1]
        attrs: Dict[str, Any] = {"sAMAccountName": sam_account_name or f"{name.upper()}$"}
        attrs.update(attributes)
        attrs.setdefault("userAccountControl", 4096 if enabled else 4098)
        return self.add_object(dn, COMPUTER_CLASSES, attrs, enabled=enabled, member_of=member_of)

    def add_group(self, dn: str, sam_account_name: Optional[str] = None,
                  member_of: Optional[Iterable[str]] = None, **attributes: Any) -> DirectoryRecord:
        attrs: Dict[str, Any] = {"sAMAccountName": sam_account_name or dn.split(',', 1)[0].split('=', 1)[-1]}
        attrs.update(attributes)
        return self.add_object(dn, GROUP_CLASSES, attrs, member_of=member_of)

    def add_member(self, group_dn: str, member_dn: str) -> None:
        """Add member_dn to group_dn (appends to the member's memberOf)."""
        member = self._objects.get(dn_key(member_dn))
        if member is None:
            raise NotFound(f"No object with DN '{member_dn}'", key=member_dn)
        if dn_key(group_dn) not in self._objects:
            raise NotFound(f"No group with DN '{group_dn}'", key=group_dn)
        if all(dn_key(g) != dn_key(group_dn) for g in member.member_of):
            member.member_of.append(group_dn)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryDirectory":
        directory = cls(fast_path_timeouts=data.get("fastPathTimeouts"))
        for obj in data.get("objects", []):
            directory.add_object(
                obj["dn"],
                obj.get("objectClass", USER_CLASSES),
                obj.get("attributes"),
                enabled=obj.get("enabled", True),
                member_of=obj.get("memberOf"),
            )
        return directory

    @classmethod
    def from_json(cls, path: str) -> "InMemoryDirectory":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        directory = cls.from_dict(data)
        logger.info(f"[SNAPSHOT] Loaded {len(directory._objects)} object(s) from {path}")
        return directory

    # ------------------------------------------------------------------
    # DirectoryService
    # ------------------------------------------------------------------

    def find(self, search_filter: Filter, attributes: Sequence[str] = ()) -> List[DirectoryRecord]:
        return [self._project(r, attributes) for r in self._objects.values() if search_filter.matches(r)]

    def get_by_dn(self, dn: str, attributes: Sequence[str] = ()) -> DirectoryRecord:
        record = self._objects.get(dn_key(dn))
        if record is None:
            raise NotFound(f"No object with DN '{dn}'", key=dn)
        return self._project(record, attributes)

    def get_group_members(self, group: str, recursive: bool = True, attributes: Sequence[str] = ()) -> MembershipResult:
        group_record = self._find_group(group)

        if self._times_out(group, group_record):
            return MembershipTimedOut(group=group, reason="simulated timeout")

        members: List[DirectoryRecord] = []
        seen = {dn_key(group_record.distinguished_name)}
        pending = [group_record.distinguished_name]
        while pending:
            current = dn_key(pending.pop(0))
            for record in self._objects.values():
                if dn_key(record.distinguished_name) in seen:
                    continue
                if not any(dn_key(g) == current for g in record.member_of or []):
                    continue
                seen.add(dn_key(record.distinguished_name))
                if record.is_group:
                    if recursive:
                        pending.append(record.distinguished_name)
                    continue
                members.append(self._project(record, attributes))
        return MembersFound(group=group, records=members)

    # ------------------------------------------------------------------

    def _find_group(self, group: str) -> DirectoryRecord:
        if classify_key(group) == KeyFormat.DISTINGUISHED_NAME:
            record = self._objects.get(dn_key(group))
            if record is None or not record.is_group:
                raise NotFound(f"No group with DN '{group}'", key=group)
            return record
        matches = [r for r in self._objects.values() if group_named(group).matches(r)]
        if not matches:
            raise NotFound(f"No group named '{group}'", key=group)
        if len(matches) > 1:
            raise AmbiguousMatch(group, [m.distinguished_name for m in matches])
        return matches[0]

    def _times_out(self, group: str, record: DirectoryRecord) -> bool:
        if "*" in self.fast_path_timeouts:
            return True
        names = {group.lower(), dn_key(record.distinguished_name)}
        sam = record.get("sAMAccountName")
        if sam is not None:
            names.add(str(sam.first()).lower())
        cn = record.get("cn")
        if cn is not None:
            names.add(str(cn.first()).lower())
        return bool(names & {dn_key(t) if '=' in t else t for t in self.fast_path_timeouts})

    @staticmethod
    def _project(record: DirectoryRecord, attributes: Sequence[str]) -> DirectoryRecord:
        """Copy of the record limited to the requested attributes."""
        wanted = {a.lower() for a in attributes}
        return DirectoryRecord(
            distinguished_name=record.distinguished_name,
            enabled=record.enabled,
            attributes={k: v for k, v in record.attributes.items() if k.lower() in wanted},
            member_of=list(record.member_of or []) if "memberof" in wanted else None,
            object_classes=list(record.object_classes),
        )
