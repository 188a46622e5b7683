"""Active redaction policy management.

The active policy is process-wide state: the set of PII categories currently
being redacted. It is held by a :class:`PolicyStore`, which replaces it
wholesale on every ``set`` and stamps each replacement with a new sequence
number. Consumers never read "the current value" at arbitrary times; they take
an :class:`ActivePolicy` snapshot and keep acting on it, or receive snapshots
through a :class:`Subscription` mailbox.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from voxredact.logging import get_logger

logger = get_logger(__name__)


class Category(str, Enum):
    """PII kinds that can be redacted. ``ALL`` matches every token."""

    EMAIL = "EMAIL"
    PHONE = "PHONE"
    NATIONAL_ID = "NATIONAL_ID"
    IBAN = "IBAN"
    CREDIT_CARD = "CREDIT_CARD"
    ALL = "ALL"

    @classmethod
    def parse(cls, value: str) -> "Category":
        """Resolve a category from a case-insensitive name (``ssn`` aliases ``NATIONAL_ID``)."""
        key = (value or "").strip().upper().replace("-", "_")
        if key == "SSN":
            key = "NATIONAL_ID"
        try:
            return cls(key)
        except ValueError as exc:
            raise ValueError(f"Unknown category: {value!r}") from exc


@dataclass(frozen=True)
class ActivePolicy:
    """Immutable snapshot of the categories in force.

    Attributes
    ----------
    categories:
        Categories eligible for redaction. Empty means nothing is redacted.
    sequence:
        Version number assigned by the store; strictly increasing.
    """

    categories: FrozenSet[Category] = field(default_factory=frozenset)
    sequence: int = 0

    def __contains__(self, category: object) -> bool:
        return category in self.categories

    @property
    def is_empty(self) -> bool:
        return not self.categories

    @property
    def redacts_everything(self) -> bool:
        return Category.ALL in self.categories

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": sorted(c.value for c in self.categories),
            "sequence": self.sequence,
        }


class Subscription:
    """Mailbox delivering policy snapshots to one subscriber.

    Rapid successive updates coalesce into the latest snapshot; the final
    snapshot published before a ``get`` is never lost.
    """

    def __init__(self, store: "PolicyStore") -> None:
        self._store = store
        self._cond = threading.Condition()
        self._pending: Optional[ActivePolicy] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, policy: ActivePolicy) -> None:
        with self._cond:
            if self._closed:
                return
            if self._pending is None or policy.sequence > self._pending.sequence:
                self._pending = policy
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[ActivePolicy]:
        """Block until a snapshot is available; ``None`` on timeout or close."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._pending is not None or self._closed, timeout=timeout
            )
            policy, self._pending = self._pending, None
            if self._closed:
                return None
            return policy

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify_all()
        self._store._unsubscribe(self)


class PolicyStore:
    """Single-writer holder of the process-wide :class:`ActivePolicy`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = ActivePolicy()
        self._subscribers: List[Subscription] = []

    def snapshot(self) -> ActivePolicy:
        return self._current

    def set(self, categories: Iterable[Category]) -> ActivePolicy:
        """Replace the policy. The sequence advances even if ``categories`` is unchanged."""
        cats = frozenset(Category(c) for c in categories)
        with self._lock:
            policy = ActivePolicy(categories=cats, sequence=self._current.sequence + 1)
            self._current = policy
            # Published under the lock so that every mailbox sees issue order.
            for sub in list(self._subscribers):
                sub.publish(policy)
        logger.info(
            "Active policy replaced",
            extra={"extra": policy.to_dict()},
        )
        return policy

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)


__all__ = ["Category", "ActivePolicy", "Subscription", "PolicyStore"]
