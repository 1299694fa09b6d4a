"""Per-theme daily extraction budget."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

from newsharvest.pipeline.models import BudgetUsage
from newsharvest.storage.job_store import JobStore

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class BudgetGate:
    """Admission check and counter for the daily extraction budget.

    ``admit`` reads the counter once, before candidates are fetched; it does
    not reserve capacity. Increments happen in the store, together with the
    document insert (``JobStore.commit_extraction``), and respect the ceiling
    per increment when ``hard_cap`` is on.
    """

    def __init__(self, store: JobStore, *, hard_cap: bool = True, today: Callable[[], date] = utc_today):
        self.store = store
        self.hard_cap = hard_cap
        self._today = today

    def today(self) -> date:
        return self._today()

    def usage(self, theme_id: str, limit: int) -> BudgetUsage:
        return self.store.get_budget(theme_id, self.today(), limit)

    def admit(self, theme_id: str, limit: int, requested: int) -> int:
        """How many of ``requested`` units may start now (0 when exhausted)."""
        usage = self.usage(theme_id, limit)
        admitted = max(0, min(requested, usage.remaining))
        logger.info(f"[budget] theme={theme_id} used={usage.used}/{usage.limit} requested={requested} admitted={admitted}")
        return admitted

    def reset(self, theme_id: str, limit: int) -> BudgetUsage:
        usage = self.store.reset_budget(theme_id, self.today(), limit)
        logger.info(f"[budget] theme={theme_id} reset for {usage.day}")
        return usage
