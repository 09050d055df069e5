"""
Knowledge graph store for NovelForge.

Characters, locations, events, items and concepts of each project live in a
networkx MultiDiGraph as label-typed nodes joined by typed, weighted
relations. Nodes are addressed by (project id, label, id), so an id is unique
per label within a project. Callers only ever see plain dict snapshots of
nodes and relations, never graph objects.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

import networkx as nx

from ..core.errors import InvalidInputError
from ..models import utc_now

logger = logging.getLogger("novelforge.graph")

ProjectKey = Union[int, str]


class NodeLabel(str, Enum):
    CHARACTER = "Character"
    LOCATION = "Location"
    EVENT = "Event"
    ITEM = "Item"
    CONCEPT = "Concept"


class RelationType(str, Enum):
    # Between characters
    KNOWS = "KNOWS"
    FAMILY_OF = "FAMILY_OF"
    MASTER_OF = "MASTER_OF"
    ENEMY_OF = "ENEMY_OF"
    ALLY_OF = "ALLY_OF"
    LOVES = "LOVES"
    # Places
    LOCATED_AT = "LOCATED_AT"
    BORN_AT = "BORN_AT"
    LIVES_IN = "LIVES_IN"
    # Events
    HAPPENS_AT = "HAPPENS_AT"
    PARTICIPATES = "PARTICIPATES"
    CAUSES = "CAUSES"
    LEADS_TO = "LEADS_TO"
    # Items
    OWNS = "OWNS"
    USES = "USES"
    CREATES = "CREATES"
    # Concepts
    MASTERS = "MASTERS"
    BELONGS_TO = "BELONGS_TO"


CHARACTER_RELATIONS = {
    RelationType.KNOWS.value,
    RelationType.FAMILY_OF.value,
    RelationType.MASTER_OF.value,
    RelationType.ENEMY_OF.value,
    RelationType.ALLY_OF.value,
    RelationType.LOVES.value,
}
ARC_RELATIONS = {RelationType.CAUSES.value, RelationType.LEADS_TO.value}

NodeRef = Tuple[str, str]  # (label, id)

# Node-link field holding the graph key; nodes keep their own "id" attribute
NODE_KEY_FIELD = "key"


def _label(label: Union[str, NodeLabel]) -> str:
    try:
        return NodeLabel(label).value
    except ValueError:
        raise InvalidInputError(f"Unknown node label: {label}") from None


def _relation(rel_type: Union[str, RelationType]) -> str:
    try:
        return RelationType(rel_type).value
    except ValueError:
        raise InvalidInputError(f"Unknown relation type: {rel_type}") from None


class GraphStore:
    """Project-scoped labelled property graph over networkx."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._graph = nx.MultiDiGraph()

    @staticmethod
    def node_key(project_id: ProjectKey, label: Union[str, NodeLabel], node_id: str) -> str:
        return f"{project_id}:{_label(label)}:{node_id}"

    def _snapshot(self, key: str) -> Dict[str, Any]:
        return dict(self._graph.nodes[key])

    def _require(self, project_id: ProjectKey, label: Union[str, NodeLabel], node_id: str) -> str:
        key = self.node_key(project_id, label, node_id)
        if key not in self._graph:
            raise InvalidInputError(f"No {_label(label)} node '{node_id}' in project {project_id}")
        return key

    # ========================================================================
    # Nodes
    # ========================================================================

    def create_node(
        self,
        project_id: ProjectKey,
        label: Union[str, NodeLabel],
        node_id: str,
        name: str,
        description: str = "",
        properties: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        key = self.node_key(project_id, label, node_id)
        if key in self._graph:
            raise InvalidInputError(f"{_label(label)} node '{node_id}' already exists in project {project_id}")
        now = utc_now().isoformat()
        self._graph.add_node(
            key,
            project_id=str(project_id),
            label=_label(label),
            id=node_id,
            name=name,
            description=description,
            properties=dict(properties or {}),
            created_at=now,
            updated_at=now,
        )
        return self._snapshot(key)

    def get_node(
        self,
        project_id: ProjectKey,
        node_id: str,
        label: Optional[Union[str, NodeLabel]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch a node by id, optionally restricted to one label."""
        labels = [_label(label)] if label is not None else [l.value for l in NodeLabel]
        for candidate in labels:
            key = self.node_key(project_id, candidate, node_id)
            if key in self._graph:
                return self._snapshot(key)
        return None

    def update_node(
        self,
        project_id: ProjectKey,
        label: Union[str, NodeLabel],
        node_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        key = self._require(project_id, label, node_id)
        attrs = self._graph.nodes[key]
        if name is not None:
            attrs["name"] = name
        if description is not None:
            attrs["description"] = description
        if properties:
            attrs["properties"] = {**attrs["properties"], **properties}
        attrs["updated_at"] = utc_now().isoformat()
        return self._snapshot(key)

    def delete_node(self, project_id: ProjectKey, label: Union[str, NodeLabel], node_id: str) -> bool:
        """Detach and delete. Returns False when the node did not exist."""
        key = self.node_key(project_id, label, node_id)
        if key not in self._graph:
            return False
        self._graph.remove_node(key)
        return True

    def find_nodes_by_type(
        self,
        project_id: ProjectKey,
        label: Union[str, NodeLabel],
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        wanted = _label(label)
        project = str(project_id)
        found = []
        for _, attrs in self._graph.nodes(data=True):
            if attrs["project_id"] == project and attrs["label"] == wanted:
                found.append(dict(attrs))
                if len(found) >= limit:
                    break
        return found

    # ========================================================================
    # Relations
    # ========================================================================

    def create_relation(
        self,
        project_id: ProjectKey,
        source: NodeRef,
        target: NodeRef,
        rel_type: Union[str, RelationType],
        weight: float = 0.5,
        properties: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not 0.0 <= weight <= 1.0:
            raise InvalidInputError(f"Relation weight must be in [0, 1], got {weight}")
        source_key = self._require(project_id, *source)
        target_key = self._require(project_id, *target)
        relation_id = uuid4().hex
        self._graph.add_edge(
            source_key,
            target_key,
            key=relation_id,
            id=relation_id,
            type=_relation(rel_type),
            weight=weight,
            properties=dict(properties or {}),
            created_at=utc_now().isoformat(),
        )
        return relation_id

    def _relation_snapshot(self, source: str, target: str, attrs: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": attrs["id"],
            "type": attrs["type"],
            "weight": attrs["weight"],
            "properties": dict(attrs["properties"]),
            "from": self._graph.nodes[source]["id"],
            "from_label": self._graph.nodes[source]["label"],
            "to": self._graph.nodes[target]["id"],
            "to_label": self._graph.nodes[target]["label"],
        }

    def relations_of(self, project_id: ProjectKey, label: Union[str, NodeLabel], node_id: str) -> List[Dict[str, Any]]:
        key = self._require(project_id, label, node_id)
        relations = [
            self._relation_snapshot(s, t, attrs)
            for s, t, attrs in self._graph.out_edges(key, data=True)
        ]
        relations.extend(
            self._relation_snapshot(s, t, attrs)
            for s, t, attrs in self._graph.in_edges(key, data=True)
        )
        return relations

    # ========================================================================
    # Traversal
    # ========================================================================

    def _undirected(self) -> nx.MultiGraph:
        return self._graph.to_undirected(as_view=True)

    def find_paths(
        self,
        project_id: ProjectKey,
        source: NodeRef,
        target: NodeRef,
        depth: int = 3,
    ) -> List[List[Dict[str, Any]]]:
        """All simple paths of at most `depth` hops, ignoring relation direction."""
        if depth < 1:
            raise InvalidInputError("depth must be at least 1")
        source_key = self._require(project_id, *source)
        target_key = self._require(project_id, *target)
        seen = set()
        paths = []
        for path in nx.all_simple_paths(self._undirected(), source_key, target_key, cutoff=depth):
            marker = tuple(path)
            if marker in seen:
                continue
            seen.add(marker)
            paths.append([self._snapshot(key) for key in path])
        return paths

    def shortest_path(
        self,
        project_id: ProjectKey,
        source: NodeRef,
        target: NodeRef,
    ) -> Optional[List[Dict[str, Any]]]:
        source_key = self._require(project_id, *source)
        target_key = self._require(project_id, *target)
        try:
            path = nx.shortest_path(self._undirected(), source_key, target_key)
        except nx.NetworkXNoPath:
            return None
        return [self._snapshot(key) for key in path]

    def neighbours(self, project_id: ProjectKey, label: Union[str, NodeLabel], node_id: str) -> List[Dict[str, Any]]:
        """One-hop neighbours in either direction."""
        key = self._require(project_id, label, node_id)
        keys = dict.fromkeys(list(self._graph.successors(key)) + list(self._graph.predecessors(key)))
        return [self._snapshot(k) for k in keys]

    # ========================================================================
    # Query helpers behind the query_graph tool
    # ========================================================================

    def character_relations(
        self,
        project_id: ProjectKey,
        character_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        if character_id is not None:
            edges: Iterable = self._graph.edges(
                [self._require(project_id, NodeLabel.CHARACTER, character_id)], data=True,
            )
            key = self.node_key(project_id, NodeLabel.CHARACTER, character_id)
            edges = list(edges) + list(self._graph.in_edges(key, data=True))
        else:
            project = str(project_id)
            edges = [
                (s, t, attrs) for s, t, attrs in self._graph.edges(data=True)
                if self._graph.nodes[s]["project_id"] == project
            ]
        relations = []
        for s, t, attrs in edges:
            if attrs["type"] not in CHARACTER_RELATIONS:
                continue
            if self._graph.nodes[s]["label"] != NodeLabel.CHARACTER.value:
                continue
            if self._graph.nodes[t]["label"] != NodeLabel.CHARACTER.value:
                continue
            relations.append(self._relation_snapshot(s, t, attrs))
            if len(relations) >= limit:
                break
        return relations

    def world_events(self, project_id: ProjectKey, limit: int = 20) -> List[Dict[str, Any]]:
        """Event nodes in chapter order."""
        events = self.find_nodes_by_type(project_id, NodeLabel.EVENT, limit=len(self._graph) or 1)
        events.sort(key=lambda e: (e["properties"].get("chapter", 0), e["id"]))
        return events[:limit]

    def plot_arcs(self, project_id: ProjectKey, limit: int = 10) -> List[List[str]]:
        """Chains of events linked by CAUSES / LEADS_TO, starting from root events."""
        project = str(project_id)

        def arc_successors(key: str) -> List[str]:
            return [
                t for _, t, attrs in self._graph.out_edges(key, data=True)
                if attrs["type"] in ARC_RELATIONS
            ]

        def has_arc_parent(key: str) -> bool:
            return any(attrs["type"] in ARC_RELATIONS for _, _, attrs in self._graph.in_edges(key, data=True))

        arcs = []
        for key, attrs in self._graph.nodes(data=True):
            if attrs["project_id"] != project or attrs["label"] != NodeLabel.EVENT.value:
                continue
            if has_arc_parent(key) or not arc_successors(key):
                continue
            arc = [attrs["name"]]
            visited = {key}
            current = key
            while True:
                nxt = [k for k in arc_successors(current) if k not in visited]
                if not nxt:
                    break
                current = nxt[0]
                visited.add(current)
                arc.append(self._graph.nodes[current]["name"])
            arcs.append(arc)
            if len(arcs) >= limit:
                break
        return arcs

    def character_state(self, project_id: ProjectKey, character_id: str) -> Dict[str, Any]:
        key = self._require(project_id, NodeLabel.CHARACTER, character_id)
        state: Dict[str, Any] = {
            "character": self._snapshot(key),
            "relations": [],
            "events": [],
            "items": [],
            "locations": [],
        }
        for s, t, attrs in list(self._graph.out_edges(key, data=True)) + list(self._graph.in_edges(key, data=True)):
            other = t if s == key else s
            other_attrs = self._graph.nodes[other]
            rel_type = attrs["type"]
            if rel_type in CHARACTER_RELATIONS:
                state["relations"].append(self._relation_snapshot(s, t, attrs))
            elif rel_type == RelationType.PARTICIPATES.value:
                state["events"].append(other_attrs["name"])
            elif rel_type in (RelationType.OWNS.value, RelationType.USES.value):
                state["items"].append(other_attrs["name"])
            elif rel_type in (RelationType.LOCATED_AT.value, RelationType.LIVES_IN.value):
                state["locations"].append(other_attrs["name"])
        return state

    def statistics(self) -> Dict[str, int]:
        return {
            "nodes": self._graph.number_of_nodes(),
            "relations": self._graph.number_of_edges(),
        }

    # ========================================================================
    # Persistence
    # ========================================================================

    def save(self, path: Optional[str] = None) -> None:
        """Write a node-link JSON snapshot."""
        target = path or self.path
        if not target:
            raise InvalidInputError("No graph store path configured")
        data = nx.node_link_data(self._graph, name=NODE_KEY_FIELD, edges="edges")
        Path(target).write_text(json.dumps(data, ensure_ascii=False, default=str), encoding="utf-8")

    def load(self, path: Optional[str] = None) -> bool:
        """Replace the graph with a snapshot. Returns False if the file is absent."""
        source = path or self.path
        if not source or not Path(source).exists():
            return False
        data = json.loads(Path(source).read_text(encoding="utf-8"))
        self._graph = nx.node_link_graph(data, directed=True, multigraph=True, name=NODE_KEY_FIELD, edges="edges")
        logger.info(f"[load] Loaded graph snapshot with {self._graph.number_of_nodes()} nodes from {source}")
        return True
