"""Run summary for scripts that resolve groups and identities."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ad_resolver.errors import (
    AmbiguousMatch,
    DirectoryError,
    DirectoryTimeout,
    DirectoryUnavailable,
    NotFound,
    RecursionLimitExceeded,
    describe_error,
)

logger = logging.getLogger(__name__)

ERROR_KINDS = (
    NotFound.kind,
    AmbiguousMatch.kind,
    DirectoryTimeout.kind,
    RecursionLimitExceeded.kind,
    DirectoryUnavailable.kind,
)


def utc_now_iso() -> str:
    """Return current UTC time as ISO format string with timezone info."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunSummary:
    """Counts processed items and errors for one script run"""
    name: str
    started_at: str = field(default_factory=utc_now_iso)
    processed: int = 0
    identities: int = 0
    errors: Dict[str, int] = field(default_factory=lambda: {kind: 0 for kind in ERROR_KINDS})
    messages: List[str] = field(default_factory=list)

    def record_success(self, identities: int = 0) -> None:
        self.processed += 1
        self.identities += identities

    def record_error(self, exc: Exception, context: Optional[str] = None) -> None:
        """Count an error and log it at the severity its kind warrants."""
        kind = exc.kind if isinstance(exc, DirectoryError) else "unexpected"
        self.errors[kind] = self.errors.get(kind, 0) + 1
        self.processed += 1

        severity, message = describe_error(exc)
        if context:
            message = f"{context}: {message}"
        self.messages.append(message)

        if severity == "warning":
            logger.warning(f"[RUN] {message}")
        else:
            logger.error(f"[RUN] {message}")

    @property
    def error_count(self) -> int:
        return sum(self.errors.values())

    @property
    def exit_code(self) -> int:
        return 1 if self.error_count else 0

    def summary_line(self) -> str:
        details = ", ".join(f"{kind}={count}" for kind, count in self.errors.items() if count)
        line = (
            f"{self.name}: processed {self.processed} item(s), "
            f"{self.identities} identit{'y' if self.identities == 1 else 'ies'}, "
            f"{self.error_count} error(s)"
        )
        return f"{line} ({details})" if details else line

    def log_summary(self) -> None:
        if self.error_count:
            logger.error(f"[RUN] {self.summary_line()}")
        else:
            logger.info(f"[RUN] {self.summary_line()}")

    def as_dict(self) -> Dict:
        return {
            "name": self.name,
            "started_at": self.started_at,
            "finished_at": utc_now_iso(),
            "processed": self.processed,
            "identities": self.identities,
            "error_count": self.error_count,
            "errors": dict(self.errors),
            "messages": list(self.messages),
        }
