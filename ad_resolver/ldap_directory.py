"""
Active Directory Backend
========================
DirectoryService implementation on top of ldap3.

Supports:
- LDAPS (TLS-encrypted LDAP connections) with optional custom CA validation
- Service account bind
- Paged subtree searches (large groups exceed the server's page limit)
- Recursive group enumeration through LDAP_MATCHING_RULE_IN_CHAIN
- userAccountControl based enabled/disabled detection
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Dict, List, Optional, Sequence

from ldap3 import ALL, BASE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException

from ad_resolver.directory import DirectoryService, MembersFound, MembershipResult, MembershipTimedOut
from ad_resolver.errors import (
    AmbiguousMatch,
    DirectoryTimeout,
    NotFound,
    classify_ldap_error,
)
from ad_resolver.identity import (
    DirectoryRecord,
    KeyFormat,
    classify_key,
    enabled_from_uac,
    to_attribute_value,
)
from ad_resolver.ldap_filter import And, Eq, Filter, Not, escape_value, group_named

logger = logging.getLogger(__name__)

# Transitive membership evaluated server-side
LDAP_MATCHING_RULE_IN_CHAIN = "1.2.840.113556.1.4.1941"

# Simple paged results control
PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"

# Always fetched so records carry enabled state and object class
BASE_ATTRIBUTES = ("objectClass", "userAccountControl")


class LdapDirectory(DirectoryService):
    """
    Queries Active Directory through ldap3.

    One connection is bound lazily and reused for the whole run; use the
    instance as a context manager (or call close()) to unbind it.
    """

    def __init__(
        self,
        server_host: str,
        base_dn: str,
        bind_dn: str,
        bind_password: str,
        use_ldaps: bool = True,
        ldaps_port: int = 636,
        ldap_port: int = 389,
        verify_certificate: bool = True,
        ca_certificate: Optional[str] = None,
        connect_timeout: int = 10,
        receive_timeout: int = 60,
        search_time_limit: int = 30,
        page_size: int = 500,
    ):
        """
        Initialize the AD backend.

        Args:
            server_host: Domain controller hostname or IP
            base_dn: Search base (e.g., 'DC=dept,DC=example,DC=edu')
            bind_dn: Service account DN or UPN
            bind_password: Service account password
            use_ldaps: Use LDAPS (TLS) connection
            ldaps_port: LDAPS port (default 636)
            ldap_port: LDAP port (default 389)
            verify_certificate: Verify TLS certificate
            ca_certificate: Path to CA certificate file for validation
            connect_timeout: Connection timeout in seconds
            receive_timeout: Seconds to wait for a response before giving up
            search_time_limit: Server-side time limit per search in seconds
            page_size: Entries per page for paged searches
        """
        self.server_host = server_host
        self.base_dn = base_dn
        self.bind_dn = bind_dn
        self.bind_password = bind_password
        self.use_ldaps = use_ldaps
        self.port = ldaps_port if use_ldaps else ldap_port
        self.verify_certificate = verify_certificate
        self.ca_certificate = ca_certificate
        self.connect_timeout = connect_timeout
        self.receive_timeout = receive_timeout
        self.search_time_limit = search_time_limit
        self.page_size = page_size

        self._server: Optional[Server] = None
        self._conn: Optional[Connection] = None

    @classmethod
    def from_settings(cls, settings) -> "LdapDirectory":
        return cls(
            server_host=settings.server_host,
            base_dn=settings.base_dn,
            bind_dn=settings.bind_dn,
            bind_password=settings.bind_password,
            use_ldaps=settings.use_ldaps,
            ldaps_port=settings.ldaps_port,
            ldap_port=settings.ldap_port,
            verify_certificate=settings.verify_certificate,
            ca_certificate=settings.ca_certificate,
            connect_timeout=settings.connect_timeout,
            receive_timeout=settings.receive_timeout,
            search_time_limit=settings.search_time_limit,
            page_size=settings.page_size,
        )

    def __enter__(self) -> "LdapDirectory":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get_server(self) -> Server:
        """Get or create LDAP server definition."""
        if self._server is None:
            tls_config = None
            if self.use_ldaps:
                tls_config = Tls(
                    validate=ssl.CERT_REQUIRED if self.verify_certificate else ssl.CERT_NONE,
                    ca_certs_file=self.ca_certificate if self.ca_certificate else None,
                )

            self._server = Server(
                self.server_host,
                port=self.port,
                use_ssl=self.use_ldaps,
                tls=tls_config,
                get_info=ALL,
                connect_timeout=self.connect_timeout,
            )
        return self._server

    def _connection(self) -> Connection:
        """Bind once and reuse the connection for the rest of the run."""
        if self._conn is None or not self._conn.bound:
            if self._conn is not None:
                self.close()
            logger.info(f"[LDAP] Binding to {self.server_host}:{self.port} as {self.bind_dn} (SSL={self.use_ldaps})")
            try:
                self._conn = Connection(
                    self._get_server(),
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=True,
                    raise_exceptions=True,
                    receive_timeout=self.receive_timeout,
                )
            except (LDAPException, OSError) as e:
                raise classify_ldap_error(e, key=self.server_host) from e
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.unbind()
            except (LDAPException, OSError) as e:
                logger.debug(f"[LDAP] Unbind failed: {e}")
            self._conn = None

    # ------------------------------------------------------------------
    # Searches
    # ------------------------------------------------------------------

    def _search(
        self,
        search_filter: str,
        attributes: Sequence[str],
        search_base: Optional[str] = None,
        scope=SUBTREE,
    ) -> List[DirectoryRecord]:
        """Paged search returning converted records; ldap3 errors are translated."""
        conn = self._connection()
        wanted = _merge(BASE_ATTRIBUTES, attributes)
        records: List[DirectoryRecord] = []
        cookie = None

        logger.debug(f"[LDAP] Search base={search_base or self.base_dn} filter={search_filter}")
        try:
            while True:
                conn.search(
                    search_base=search_base or self.base_dn,
                    search_filter=search_filter,
                    search_scope=scope,
                    attributes=wanted,
                    time_limit=self.search_time_limit,
                    paged_size=self.page_size if scope == SUBTREE else None,
                    paged_cookie=cookie,
                )
                for response in conn.response or []:
                    if response.get("type") != "searchResEntry":
                        continue
                    records.append(self._to_record(response, attributes))

                cookie = (
                    conn.result.get("controls", {})
                    .get(PAGED_RESULTS_OID, {})
                    .get("value", {})
                    .get("cookie")
                )
                if not cookie:
                    break
        except (LDAPException, OSError) as e:
            raise classify_ldap_error(e, key=search_filter) from e

        return records

    @staticmethod
    def _to_record(response: Dict[str, Any], requested: Sequence[str]) -> DirectoryRecord:
        raw_attributes = dict(response.get("attributes") or {})
        object_classes = [str(oc) for oc in _as_list(_pop_ci(raw_attributes, "objectClass"))]
        uac = raw_attributes.get("userAccountControl")

        member_of: Optional[List[str]] = None
        if any(a.lower() == "memberof" for a in requested):
            member_of = [str(g) for g in _as_list(_get_ci(raw_attributes, "memberOf"))]

        attributes = {
            name: to_attribute_value(value)
            for name, value in raw_attributes.items()
            if value not in (None, [], "")
        }

        return DirectoryRecord(
            distinguished_name=str(response.get("dn")),
            enabled=enabled_from_uac(uac if not isinstance(uac, list) else (uac[0] if uac else None)),
            attributes=attributes,
            member_of=member_of,
            object_classes=object_classes,
        )

    # ------------------------------------------------------------------
    # DirectoryService
    # ------------------------------------------------------------------

    def find(self, search_filter: Filter, attributes: Sequence[str] = ()) -> List[DirectoryRecord]:
        return self._search(search_filter.to_ldap(), attributes)

    def get_by_dn(self, dn: str, attributes: Sequence[str] = ()) -> DirectoryRecord:
        try:
            records = self._search("(objectClass=*)", attributes, search_base=dn, scope=BASE)
        except NotFound:
            raise NotFound(f"No object with DN '{dn}'", key=dn)
        if not records:
            raise NotFound(f"No object with DN '{dn}'", key=dn)
        return records[0]

    def get_group_members(self, group: str, recursive: bool = True, attributes: Sequence[str] = ()) -> MembershipResult:
        try:
            group_dn = self._group_dn(group)
            if recursive:
                membership = f"(memberOf:{LDAP_MATCHING_RULE_IN_CHAIN}:={escape_value(group_dn)})"
                search_filter = f"(&{Not(Eq('objectClass', 'group')).to_ldap()}{membership})"
            else:
                search_filter = And(Not(Eq('objectClass', 'group')), Eq('memberOf', group_dn)).to_ldap()
            records = self._search(search_filter, attributes)
        except DirectoryTimeout as e:
            logger.warning(f"[LDAP] Membership enumeration for {group} timed out: {e.message}")
            return MembershipTimedOut(group=group, reason=e.message)

        logger.info(f"[LDAP] {group}: {len(records)} member(s) via {'in-chain' if recursive else 'direct'} search")
        return MembersFound(group=group, records=records)

    def _group_dn(self, group: str) -> str:
        if classify_key(group) == KeyFormat.DISTINGUISHED_NAME:
            return group
        matches = self._search(group_named(group).to_ldap(), ("cn",))
        if not matches:
            raise NotFound(f"No group named '{group}'", key=group)
        if len(matches) > 1:
            raise AmbiguousMatch(group, [m.distinguished_name for m in matches])
        return matches[0].distinguished_name


def _merge(base: Sequence[str], extra: Sequence[str]) -> List[str]:
    merged = list(base)
    lowered = {a.lower() for a in base}
    for attr in extra:
        if attr.lower() not in lowered:
            lowered.add(attr.lower())
            merged.append(attr)
    return merged


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _get_ci(attributes: Dict[str, Any], name: str) -> Any:
    for key, value in attributes.items():
        if key.lower() == name.lower():
            return value
    return None


def _pop_ci(attributes: Dict[str, Any], name: str) -> Any:
    for key in list(attributes):
        if key.lower() == name.lower():
            return attributes.pop(key)
    return None
