"""
Static geography catalog.

Loads state names, region membership, split-state rules, legacy city keywords,
entity-name patterns and state populations from a declarative YAML file so the
classification code itself carries no hard-coded geography.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from .errors import ConfigurationError

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "geography.yaml"


@dataclass(frozen=True)
class RegionDefinition:
    """A named region and the states it covers."""

    name: str
    states: Tuple[str, ...] = ()
    population: Optional[int] = None


@dataclass(frozen=True)
class SplitRule:
    """
    A state divided between two regions at a latitude threshold.

    Points at or above the threshold belong to ``north``. ``keywords`` maps a
    region name to lowercase city/keyword strings used only when no latitude
    is available.
    """

    state: str
    latitude_threshold: float
    north: str
    south: str
    default: str
    keywords: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def regions(self) -> Tuple[str, str]:
        return (self.north, self.south)

    def resolve_latitude(self, latitude: float) -> str:
        return self.north if latitude >= self.latitude_threshold else self.south

    def resolve_keywords(self, text: Optional[str]) -> Optional[Tuple[str, str]]:
        """Return (region, keyword) for the longest keyword found in text, if any."""
        if not text:
            return None
        lowered = text.lower()
        candidates = [
            (keyword, region) for region, keywords in self.keywords.items() for keyword in keywords
        ]
        # Longest first so "west hollywood" beats "hollywood"
        for keyword, region in sorted(candidates, key=lambda kv: (-len(kv[0]), kv[0])):
            if re.search(rf"(?<![a-z]){re.escape(keyword)}(?![a-z])", lowered):
                return region, keyword
        return None


@dataclass(frozen=True)
class NamePattern:
    region: str
    pattern: Pattern[str]


@dataclass
class GeographyCatalog:
    """Read-only geography shared by every assignment and metrics run."""

    states: Dict[str, str]
    regions: List[RegionDefinition]
    splits: List[SplitRule]
    state_populations: Dict[str, int]
    regional_patterns: List[NamePattern]
    street_suffixes: Tuple[str, ...]
    directional_tokens: Tuple[str, ...]

    def __post_init__(self) -> None:
        self._regions_by_name = {region.name: region for region in self.regions}
        self._split_by_state = {split.state: split for split in self.splits}
        self._split_by_region = {
            region: split for split in self.splits for region in split.regions
        }
        self._region_by_state: Dict[str, str] = {}
        for region in self.regions:
            for state in region.states:
                if state in self._split_by_state:
                    continue
                if state in self._region_by_state:
                    raise ConfigurationError(
                        f"State '{state}' belongs to both '{self._region_by_state[state]}' "
                        f"and '{region.name}' without a split rule"
                    )
                self._region_by_state[state] = region.name

    @property
    def region_names(self) -> List[str]:
        return [region.name for region in self.regions]

    @property
    def state_names(self) -> List[str]:
        return list(self.states.values())

    def get_region(self, name: str) -> Optional[RegionDefinition]:
        return self._regions_by_name.get(name)

    def is_region(self, name: Optional[str]) -> bool:
        return bool(name) and name in self._regions_by_name

    def split_for_state(self, state: str) -> Optional[SplitRule]:
        return self._split_by_state.get(state)

    def split_for_region(self, region: str) -> Optional[SplitRule]:
        return self._split_by_region.get(region)

    def region_for_state(self, state: str) -> Optional[str]:
        """Region for a state that is not split; split states need a SplitRule."""
        return self._region_by_state.get(state)

    def state_for_abbreviation(self, abbreviation: str) -> Optional[str]:
        return self.states.get(abbreviation.upper())

    def estimated_population(self, region_name: str) -> int:
        """
        Sum of member-state populations, or the region's explicit override.

        Unknown states are skipped with a warning.
        """
        region = self.get_region(region_name)
        if region is None:
            logger.warning(f"   ⚠️ Unknown region '{region_name}', population 0")
            return 0
        if region.population is not None:
            return region.population

        total = 0
        for state in region.states:
            population = self.state_populations.get(state)
            if population is None:
                logger.warning(f"   ⚠️ Population data not available for {state}")
                continue
            total += population
        return total


def _compile(pattern: str, source: str) -> Pattern[str]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"Invalid pattern for {source}: {pattern!r} ({e})") from e


def build_catalog(data: Dict[str, Any]) -> GeographyCatalog:
    """Build a GeographyCatalog from parsed YAML data."""
    if not isinstance(data, dict) or "states" not in data or "regions" not in data:
        raise ConfigurationError("Geography catalog requires 'states' and 'regions' sections")

    states = {str(abbr).upper(): str(name) for abbr, name in data["states"].items()}

    regions = []
    for entry in data["regions"]:
        if "name" not in entry:
            raise ConfigurationError(f"Region entry without a name: {entry}")
        regions.append(
            RegionDefinition(
                name=entry["name"],
                states=tuple(entry.get("states") or ()),
                population=entry.get("population"),
            )
        )

    splits = []
    for entry in data.get("splits") or []:
        try:
            splits.append(
                SplitRule(
                    state=entry["state"],
                    latitude_threshold=float(entry["latitude_threshold"]),
                    north=entry["north"],
                    south=entry["south"],
                    default=entry.get("default", entry["north"]),
                    keywords={
                        region: tuple(str(k).lower() for k in keywords)
                        for region, keywords in (entry.get("keywords") or {}).items()
                    },
                )
            )
        except KeyError as e:
            raise ConfigurationError(f"Split rule missing key {e}: {entry}") from e

    patterns = [
        NamePattern(region=entry["region"], pattern=_compile(entry["pattern"], entry["region"]))
        for entry in (data.get("name_patterns") or {}).get("regional", [])
    ]

    return GeographyCatalog(
        states=states,
        regions=regions,
        splits=splits,
        state_populations={str(k): int(v) for k, v in (data.get("state_populations") or {}).items()},
        regional_patterns=patterns,
        street_suffixes=tuple(str(s).lower() for s in data.get("street_suffixes") or ()),
        directional_tokens=tuple(str(t).upper() for t in data.get("directional_tokens") or ()),
    )


def load_catalog(path: Optional[Union[str, Path]] = None) -> GeographyCatalog:
    """
    Load the geography catalog from YAML.

    Args:
        path: Catalog file. Defaults to the catalog shipped with the package.

    Returns:
        GeographyCatalog instance
    """
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    if not catalog_path.exists():
        raise ConfigurationError(f"Geography catalog not found: {catalog_path}")

    logger.debug(f"📋 Loading geography catalog from {catalog_path}")
    with open(catalog_path, "r") as f:
        data = yaml.safe_load(f)

    catalog = build_catalog(data)
    logger.debug(
        f"   ✅ {len(catalog.states)} states, {len(catalog.regions)} regions, "
        f"{len(catalog.splits)} split rule(s)"
    )
    return catalog
