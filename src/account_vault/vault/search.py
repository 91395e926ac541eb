# Vault - Nickname Search
#
# A record matches when its lower-cased nickname starts with the lower-cased
# query, or when the fuzzy ratio between the two exceeds FUZZY_THRESHOLD.
# Results keep vault order. The index never mutates the store.

from typing import List, Optional

from rapidfuzz import fuzz

from .models import AccountRecord
from .store import VaultStore

FUZZY_THRESHOLD = 40        # ratio must be strictly greater (0-100 scale)


def fuzzy_ratio(a: str, b: str) -> int:
    """Indel similarity of two strings on a 0-100 scale (case-insensitive).

    2 * LCS / (len(a) + len(b)), the same ratio FuzzySharp and fuzzywuzzy use.
    """
    a, b = a.lower(), b.lower()
    if not a and not b:
        return 100
    return round(fuzz.ratio(a, b))


class SearchIndex:
    """Read-only nickname search over a VaultStore."""

    def __init__(self, store: VaultStore, threshold: int = FUZZY_THRESHOLD):
        self._store = store
        self.threshold = threshold

    def matches(self, query: str, nickname: str) -> bool:
        q = query.lower()
        name = (nickname or "").lower()
        return name.startswith(q) or fuzzy_ratio(q, name) > self.threshold

    def search(self, query: Optional[str]) -> List[int]:
        """Indices of matching records, in vault order.

        An empty query matches everything.
        """
        records = self._store.snapshot()
        query = (query or "").strip()
        if not query:
            return list(range(len(records)))

        return [i for i, r in enumerate(records) if self.matches(query, r.nickname)]

    def search_records(self, query: Optional[str]) -> List[AccountRecord]:
        records = self._store.snapshot()
        return [records[i] for i in self.search(query)]
