"""Majority-vote lookup of regions previously assigned to the same entity name."""

from collections import Counter
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from loguru import logger

from .geography import GeographyCatalog


class HistoricalAssignmentIndex:
    """
    {name -> {region -> count}} built once per run.

    ``lookup`` returns the modal region for an exact name. Ties go to the
    alphabetically first region so repeated runs agree.
    """

    def __init__(self, counts: Optional[Mapping[str, Mapping[str, int]]] = None):
        self._counts: Dict[str, Counter] = {
            name: Counter(regions) for name, regions in (counts or {}).items()
        }

    @classmethod
    def build(
        cls,
        rows: Iterable[Mapping[str, Any]],
        name_column: str = "name",
        region_column: str = "region",
        catalog: Optional[GeographyCatalog] = None,
    ) -> "HistoricalAssignmentIndex":
        """
        Build the index from (name, region) rows.

        Rows with a blank name or region are ignored, as are regions the
        catalog does not know about when a catalog is given.
        """
        counts: Dict[str, Counter] = {}
        skipped = 0
        for row in rows:
            name = row.get(name_column)
            region = row.get(region_column)
            if not name or not region:
                continue
            name = str(name).strip()
            region = str(region).strip()
            if catalog is not None and not catalog.is_region(region):
                skipped += 1
                continue
            counts.setdefault(name, Counter())[region] += 1

        if skipped:
            logger.debug(f"   ⚠️ Ignored {skipped} historical rows with unknown regions")
        logger.debug(f"   📚 Historical index: {len(counts)} distinct names")
        return cls(counts)

    def votes(self, name: Optional[str]) -> Dict[str, int]:
        if not name:
            return {}
        return dict(self._counts.get(name.strip(), {}))

    def lookup_with_votes(self, name: Optional[str]) -> Optional[Tuple[str, int, int]]:
        """Return (region, region votes, total votes) for the modal region."""
        votes = self.votes(name)
        if not votes:
            return None
        region, count = min(votes.items(), key=lambda kv: (-kv[1], kv[0]))
        return region, count, sum(votes.values())

    def lookup(self, name: Optional[str]) -> Optional[str]:
        result = self.lookup_with_votes(name)
        return result[0] if result else None

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._counts
