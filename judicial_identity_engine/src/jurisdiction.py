"""
Jurisdiction Hierarchy for the Judicial Identity Engine.

Jurisdictions form a tree of path-like keys rooted at ``us``:

    us
    ├── ca
    │   └── ca/los-angeles
    │       └── ca/los-angeles/superior
    └── federal
        └── federal/ca-central

The tree is held in a NetworkX directed graph (parent -> child edges) so that
containment and "nearest enclosing node" queries are graph lookups.
"""

import logging
from typing import Optional, Dict, List, Iterable, Set

import networkx as nx

logger = logging.getLogger(__name__)

ROOT = "us"

# Full state names to postal codes
STATE_ALIASES: Dict[str, str] = {
    "alabama": "al", "alaska": "ak", "arizona": "az", "arkansas": "ar",
    "california": "ca", "colorado": "co", "connecticut": "ct", "delaware": "de",
    "district of columbia": "dc", "florida": "fl", "georgia": "ga", "hawaii": "hi",
    "idaho": "id", "illinois": "il", "indiana": "in", "iowa": "ia",
    "kansas": "ks", "kentucky": "ky", "louisiana": "la", "maine": "me",
    "maryland": "md", "massachusetts": "ma", "michigan": "mi", "minnesota": "mn",
    "mississippi": "ms", "missouri": "mo", "montana": "mt", "nebraska": "ne",
    "nevada": "nv", "new hampshire": "nh", "new jersey": "nj", "new mexico": "nm",
    "new york": "ny", "north carolina": "nc", "north dakota": "nd", "ohio": "oh",
    "oklahoma": "ok", "oregon": "or", "pennsylvania": "pa", "rhode island": "ri",
    "south carolina": "sc", "south dakota": "sd", "tennessee": "tn", "texas": "tx",
    "utah": "ut", "vermont": "vt", "virginia": "va", "washington": "wa",
    "west virginia": "wv", "wisconsin": "wi", "wyoming": "wy",
}

STATE_CODES: Set[str] = set(STATE_ALIASES.values())

# Free-text tokens below the state level
TOKEN_ALIASES: Dict[str, str] = {
    "la": "los-angeles",
    "l a": "los-angeles",
    "sf": "san-francisco",
    "superior court": "superior",
    "superior ct": "superior",
    "municipal court": "municipal",
    "district court": "district",
    "court of appeal": "appellate",
    "court of appeals": "appellate",
    "appeals": "appellate",
    "appeal": "appellate",
    "supreme court": "supreme",
    "us": ROOT,
    "usa": ROOT,
    "united states": ROOT,
    "fed": "federal",
}


def canonical_token(token: str, depth: int = 0) -> str:
    """
    Map one free-text jurisdiction token onto its canonical form.

    Args:
        token: Lowercased, whitespace-collapsed token.
        depth: Position of the token in the path (0 = state level).

    Returns:
        Canonical hyphenated token.
    """
    token = token.strip().lower()
    if token.endswith(" county"):
        token = token[: -len(" county")]
    if depth == 0 and token in STATE_ALIASES:
        return STATE_ALIASES[token]
    # "la" is both Louisiana and Los Angeles; only the state slot reads it as a state
    if depth == 0 and token in STATE_CODES:
        return token
    token = TOKEN_ALIASES.get(token, token)
    return token.replace(" ", "-")


class JurisdictionHierarchy:
    """
    Tree of canonical jurisdiction keys.

    Every node key is the full path from (but excluding) the root, e.g.
    ``ca/los-angeles/superior``. The root itself is ``us``.
    """

    def __init__(self, paths: Optional[Iterable[str]] = None):
        """
        Initialize the hierarchy.

        Args:
            paths: Optional canonical keys to register up front.
        """
        self.graph = nx.DiGraph()
        self.graph.add_node(ROOT, depth=0)
        for path in paths or []:
            self.add_path(path)

    def add_path(self, key: str) -> str:
        """
        Register a key and all of its enclosing nodes.

        Args:
            key: Canonical key such as ``ca/los-angeles/superior``.

        Returns:
            The registered key.
        """
        key = key.strip("/").lower()
        if not key or key == ROOT:
            return ROOT

        parent = ROOT
        parts = key.split("/")
        for depth in range(1, len(parts) + 1):
            node = "/".join(parts[:depth])
            if node not in self.graph:
                self.graph.add_node(node, depth=depth)
                self.graph.add_edge(parent, node)
            parent = node
        return key

    def has_node(self, key: Optional[str]) -> bool:
        return bool(key) and key in self.graph

    def parent(self, key: str) -> Optional[str]:
        """Nearest enclosing node, or None for the root."""
        if key not in self.graph:
            return None
        return next(iter(self.graph.predecessors(key)), None)

    def ancestors(self, key: str) -> List[str]:
        """Enclosing nodes from nearest to the root (excluding ``key``)."""
        chain = []
        node = self.parent(key)
        while node is not None:
            chain.append(node)
            node = self.parent(node)
        return chain

    def is_within(self, key: str, scope: str) -> bool:
        """True if ``key`` equals ``scope`` or lies beneath it."""
        if key not in self.graph or scope not in self.graph:
            return False
        return key == scope or scope in self.ancestors(key)

    def same_branch(self, a: str, b: str) -> bool:
        """
        True if one key contains the other.

        Two keys on different branches (e.g. two counties of one state) are
        incompatible: reaching one from the other would cross a sibling.
        """
        return self.is_within(a, b) or self.is_within(b, a)

    def descendants(self, key: str) -> Set[str]:
        if key not in self.graph:
            return set()
        return set(nx.descendants(self.graph, key))

    def depth(self, key: str) -> int:
        return self.graph.nodes[key].get("depth", 0) if key in self.graph else -1

    def __contains__(self, key: str) -> bool:
        return self.has_node(key)

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    @classmethod
    def from_courts(cls, courts: Iterable) -> "JurisdictionHierarchy":
        """Build a hierarchy holding every court's jurisdiction key."""
        hierarchy = cls()
        for court in courts:
            hierarchy.add_path(court.jurisdiction)
        logger.info("Built jurisdiction hierarchy with %d nodes", len(hierarchy))
        return hierarchy
