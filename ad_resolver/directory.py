"""
Directory Service interface.

The resolver and the identity cache only talk to a DirectoryService. Two
backends implement it: LdapDirectory (ldap3, Active Directory) and
InMemoryDirectory (snapshots for dry runs and tests).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence, Union

from ad_resolver.identity import DirectoryRecord
from ad_resolver.ldap_filter import Filter


@dataclass
class MembersFound:
    """Group enumeration succeeded"""
    group: str
    records: List[DirectoryRecord] = field(default_factory=list)


@dataclass
class MembershipTimedOut:
    """Group enumeration hit a timeout; callers fall back to manual recursion"""
    group: str
    reason: str = "timeout"


MembershipResult = Union[MembersFound, MembershipTimedOut]


class DirectoryService(ABC):
    """Query primitives the resolution core depends on"""

    @abstractmethod
    def find(self, search_filter: Filter, attributes: Sequence[str] = ()) -> List[DirectoryRecord]:
        """
        Search the directory (findUserOrGroup).

        Args:
            search_filter: Filter composed from ad_resolver.ldap_filter
            attributes: Attributes to fetch; memberOf is only populated when requested

        Raises:
            DirectoryTimeout, DirectoryUnavailable
        """

    @abstractmethod
    def get_by_dn(self, dn: str, attributes: Sequence[str] = ()) -> DirectoryRecord:
        """
        Fetch one object by distinguished name.

        Raises:
            NotFound: If no object has this DN
            DirectoryTimeout, DirectoryUnavailable
        """

    @abstractmethod
    def get_group_members(
        self,
        group: str,
        recursive: bool = True,
        attributes: Sequence[str] = (),
    ) -> MembershipResult:
        """
        Enumerate a group's members with the server's own primitive.

        Timeouts are returned as MembershipTimedOut rather than raised.

        Raises:
            NotFound: If the group does not exist
            DirectoryUnavailable: Any non-timeout failure
        """
