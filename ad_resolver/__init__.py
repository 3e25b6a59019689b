"""
AD Group Resolver - directory group expansion and identity lookup for
department IT-operations scripts.
"""

__version__ = "1.0.0"

from ad_resolver.cache import IdentityCache
from ad_resolver.directory import DirectoryService, MembersFound, MembershipTimedOut
from ad_resolver.errors import (
    AmbiguousMatch,
    DirectoryError,
    DirectoryTimeout,
    DirectoryUnavailable,
    NotFound,
    RecursionLimitExceeded,
)
from ad_resolver.filters import filter_identities
from ad_resolver.identity import Identity, MultiValue, SingleValue
from ad_resolver.memory import InMemoryDirectory
from ad_resolver.resolver import GroupMembershipResolver

__all__ = [
    "AmbiguousMatch",
    "DirectoryError",
    "DirectoryService",
    "DirectoryTimeout",
    "DirectoryUnavailable",
    "GroupMembershipResolver",
    "Identity",
    "IdentityCache",
    "InMemoryDirectory",
    "MembersFound",
    "MembershipTimedOut",
    "MultiValue",
    "NotFound",
    "RecursionLimitExceeded",
    "SingleValue",
    "filter_identities",
]
