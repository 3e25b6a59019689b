"""
Directory Error Taxonomy

Exceptions raised by the identity cache, the group membership resolver and the
directory backends, plus the mapping from ldap3 exceptions to that taxonomy.
"""

import socket
from typing import Dict, List, Optional, Tuple, Type

from ldap3.core import exceptions as ldap_exceptions


class DirectoryError(Exception):
    """Base exception for directory operations"""

    kind = "directory_error"

    def __init__(self, message: str, key: Optional[str] = None):
        self.message = message
        self.key = key
        super().__init__(self.message)


class NotFound(DirectoryError):
    """No directory object matched the lookup key"""

    kind = "not_found"


class AmbiguousMatch(NotFound):
    """More than one directory object matched a non-DN lookup key"""

    kind = "ambiguous"

    def __init__(self, key: str, matches: List[str]):
        message = f"Lookup key '{key}' matched {len(matches)} directory objects: {'; '.join(matches)}"
        super().__init__(message, key=key)
        self.matches = matches


class DirectoryTimeout(DirectoryError):
    """The directory did not answer within the time limit"""

    kind = "timeout"


class RecursionLimitExceeded(DirectoryError):
    """Nested group expansion went deeper than the configured ceiling"""

    kind = "recursion_limit"

    def __init__(self, group: str, depth: int, max_depth: int):
        message = (
            f"Group nesting below '{group}' exceeded {max_depth} levels "
            f"(reached depth {depth}); membership is probably cyclic"
        )
        super().__init__(message, key=group)
        self.group = group
        self.depth = depth
        self.max_depth = max_depth


class DirectoryUnavailable(DirectoryError):
    """Authentication, connectivity or permission failure"""

    kind = "unavailable"


# ldap3 exception types mapped to our taxonomy. Order matters: the first
# isinstance match wins, so specific result codes come before LDAPException.
LDAP_ERROR_MAP: List[Tuple[Type[Exception], Type[DirectoryError], str]] = [
    (ldap_exceptions.LDAPAdminLimitExceededResult, DirectoryTimeout, "Server admin limit exceeded"),
    (ldap_exceptions.LDAPNoSuchObjectResult, NotFound, "Object does not exist"),
    (ldap_exceptions.LDAPBindError, DirectoryUnavailable, "Bind failed"),
    (ldap_exceptions.LDAPInvalidCredentialsResult, DirectoryUnavailable, "Invalid credentials"),
    (ldap_exceptions.LDAPInsufficientAccessRightsResult, DirectoryUnavailable, "Insufficient access rights"),
    (ldap_exceptions.LDAPSocketOpenError, DirectoryUnavailable, "Cannot connect to directory server"),
    (ldap_exceptions.LDAPException, DirectoryUnavailable, "LDAP error"),
]

# Socket receive errors carry the timeout only in their message
_TIMEOUT_MARKERS = ("timed out", "timeout")


def classify_ldap_error(exc: Exception, key: Optional[str] = None) -> DirectoryError:
    """
    Translate an ldap3 (or socket) exception into a DirectoryError.

    Args:
        exc: Exception raised by ldap3
        key: Lookup key or group being processed, for the error message

    Returns:
        DirectoryError instance (not raised)
    """
    if isinstance(exc, DirectoryError):
        return exc

    detail = str(exc) or type(exc).__name__

    if isinstance(exc, (ldap_exceptions.LDAPTimeLimitExceededResult, ldap_exceptions.LDAPResponseTimeoutError)):
        return DirectoryTimeout(f"Directory search timed out: {detail}", key=key)

    if isinstance(exc, ldap_exceptions.LDAPSocketReceiveError):
        if any(marker in detail.lower() for marker in _TIMEOUT_MARKERS):
            return DirectoryTimeout(f"Socket receive timed out: {detail}", key=key)
        return DirectoryUnavailable(f"Socket receive failed: {detail}", key=key)

    for exc_type, error_type, summary in LDAP_ERROR_MAP:
        if isinstance(exc, exc_type):
            return error_type(f"{summary}: {detail}", key=key)

    if isinstance(exc, (TimeoutError, socket.timeout)):
        return DirectoryTimeout(f"Timed out: {detail}", key=key)

    return DirectoryUnavailable(f"Unexpected directory failure: {detail}", key=key)


ERROR_SEVERITY: Dict[str, str] = {
    NotFound.kind: "warning",
    AmbiguousMatch.kind: "warning",
    DirectoryTimeout.kind: "error",
    RecursionLimitExceeded.kind: "error",
    DirectoryUnavailable.kind: "error",
}


def describe_error(exc: Exception) -> Tuple[str, str]:
    """
    Return (severity, message) for logging an error in a run report.

    Ambiguous matches are a data-quality issue and say so.
    """
    if isinstance(exc, AmbiguousMatch):
        return "warning", f"Data quality: {exc.message}"
    if isinstance(exc, DirectoryError):
        return ERROR_SEVERITY.get(exc.kind, "error"), exc.message
    return "error", str(exc) or type(exc).__name__
