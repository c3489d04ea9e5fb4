"""
Unmapped Category Queue

Aggregates category strings no tier could resolve, keyed by
(shop, original_category). Writes are lock-guarded so concurrent
pipelines sharing one engine never lose counts.
"""

import copy
import logging
from threading import Lock
from typing import Dict, List, Optional, Tuple

from .models import SampleProduct, UnmappedCategory, utc_now

logger = logging.getLogger(__name__)


class UnmappedQueue:
    """
    Thread-safe unmapped category aggregation.

    Example:
        queue = UnmappedQueue(sample_cap=5)
        queue.record("mega", "Diverse", SampleProduct(name="Produs X"))
        queue.get("mega", "Diverse").count  # 1
    """

    def __init__(self, sample_cap: int = 5):
        self.sample_cap = sample_cap
        self._entries: Dict[Tuple[str, str], UnmappedCategory] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, shop: str, original_category: str,
               sample: Optional[SampleProduct] = None) -> UnmappedCategory:
        """
        Create or update the entry for (shop, original_category).

        The count always increases; the sample goes first in the list,
        replacing an older sample with the same name, capped at sample_cap.

        Returns:
            A snapshot of the updated entry
        """
        key = (shop, original_category)
        now = utc_now()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = UnmappedCategory(shop=shop, original_category=original_category,
                                         first_seen=now, last_seen=now)
                self._entries[key] = entry
                logger.debug(f"[{shop}] New unmapped category: '{original_category}'")

            entry.count += 1
            entry.last_seen = now

            if sample is not None and sample.name:
                samples = [s for s in entry.sample_products if s.name != sample.name]
                samples.insert(0, sample)
                entry.sample_products = samples[:self.sample_cap]

            return copy.deepcopy(entry)

    def get(self, shop: str, original_category: str) -> Optional[UnmappedCategory]:
        with self._lock:
            entry = self._entries.get((shop, original_category))
            return copy.deepcopy(entry) if entry else None

    def entries(self, shop: Optional[str] = None) -> List[UnmappedCategory]:
        """Snapshot of all entries, most frequent first."""
        with self._lock:
            snapshot = [
                copy.deepcopy(e) for e in self._entries.values()
                if shop is None or e.shop == shop
            ]
        snapshot.sort(key=lambda e: e.count, reverse=True)
        return snapshot

    def clear(self, shop: str, original_category: str) -> bool:
        """Remove one entry; True if it existed."""
        with self._lock:
            return self._entries.pop((shop, original_category), None) is not None

    def reset(self):
        with self._lock:
            self._entries.clear()
