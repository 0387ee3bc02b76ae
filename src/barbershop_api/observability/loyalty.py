from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    credits: Dict[str, int]
    races: Dict[str, int]
    sweeps: Dict[str, int]
    push: Dict[str, Dict[str, int]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "credits": dict(self.credits),
            "races": dict(self.races),
            "sweeps": dict(self.sweeps),
            "push": {key: dict(value) for key, value in self.push.items()},
        }


class LoyaltyObservabilityStore:
    """Counters for crediting and push delivery, surfaced on the operator endpoint."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._credits: Dict[str, int] = defaultdict(int)
        self._races: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)
        self._push_outcomes: Dict[str, int] = defaultdict(int)
        self._dispatches: Dict[str, int] = defaultdict(int)

    def record_credit(self, source: str, *, free_cut_granted: bool = False) -> None:
        with self._lock:
            self._credits[source] += 1
            self._credits["total"] += 1
            if free_cut_granted:
                self._credits["free_cuts_granted"] += 1

    def record_credit_race(self, source: str) -> None:
        with self._lock:
            self._races[source] += 1

    def record_sweep(self, *, scanned: int, credited: int) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            self._sweeps["scanned"] += scanned
            self._sweeps["credited"] += credited

    def record_push_outcome(self, outcome: str) -> None:
        with self._lock:
            self._push_outcomes[outcome or "unknown"] += 1

    def record_dispatch(self, status: str) -> None:
        with self._lock:
            self._dispatches[status] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                credits=dict(self._credits),
                races=dict(self._races),
                sweeps=dict(self._sweeps),
                push={
                    "deliveries": dict(self._push_outcomes),
                    "dispatches": dict(self._dispatches),
                },
            )

    def reset(self) -> None:
        with self._lock:
            self._credits.clear()
            self._races.clear()
            self._sweeps.clear()
            self._push_outcomes.clear()
            self._dispatches.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
