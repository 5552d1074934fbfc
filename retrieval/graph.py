"""
retrieval/graph.py
------------------
Bounded breadth-first traversal of the cross-reference graph.

Edges are followed in both directions. Each entity is reported once, at the
depth where it was first reached. Entities whose kind has an authoritative
table (rules, verification types, incidents, chunks, corrections) are only
reported when they still exist there; others (patterns, plan items) are
reported as named.
"""

import logging
import sqlite3

from kbindex.config import GRAPH_MAX_DEPTH
from sqlite import queries


logger = logging.getLogger(__name__)


# entity_type -> existence query
EXISTENCE_QUERIES = {
    "cr": "SELECT 1 FROM knowledge_rules WHERE rule_id = ?",
    "vr": "SELECT 1 FROM knowledge_verifications WHERE vr_type = ?",
    "incident": "SELECT 1 FROM knowledge_incidents WHERE incident_num = ?",
    "chunk": "SELECT 1 FROM knowledge_chunks WHERE id = ?",
    "correction": "SELECT 1 FROM knowledge_corrections WHERE title = ?",
}


def entity_exists(conn: sqlite3.Connection, entity_type: str, entity_id: str) -> bool:
    sql = EXISTENCE_QUERIES.get(entity_type)
    if sql is None:
        return True
    key: str | int = entity_id
    if entity_type in ("incident", "chunk"):
        if not str(entity_id).isdigit():
            return False
        key = int(entity_id)
    return conn.execute(sql, (key,)).fetchone() is not None


def clamp_depth(depth: int | None) -> int:
    return max(1, min(depth or 1, GRAPH_MAX_DEPTH))


def traverse_graph(
    conn: sqlite3.Connection,
    entity_type: str,
    entity_id: str,
    max_depth: int = 1,
) -> list[dict]:
    """
    Entities connected to a starting entity within max_depth hops.

    Args:
        entity_type: "cr", "vr", "incident", "correction", "plan_item", ...
        entity_id: Identifier within that type ("CR-1", "VR-BUILD", "3")
        max_depth: Hops to follow, clamped to 1..GRAPH_MAX_DEPTH

    Returns:
        List of dicts: entity_type, entity_id, depth, edge_type, direction,
        via_type, via_id. The start entity comes first at depth 0;
        direction is "out" when the edge points away from the entity it
        was reached from.
    """
    depth_limit = clamp_depth(max_depth)
    entity_id = str(entity_id)

    start = (entity_type, entity_id)
    visited = {start}
    results = [{
        "entity_type": entity_type,
        "entity_id": entity_id,
        "depth": 0,
        "edge_type": None,
        "direction": None,
        "via_type": None,
        "via_id": None,
    }]

    frontier = [start]
    for depth in range(1, depth_limit + 1):
        next_frontier = []

        for node_type, node_id in frontier:
            neighbours = [
                (e["target_type"], e["target_id"], e["edge_type"], "out")
                for e in queries.get_outgoing_edges(conn, node_type, node_id)
            ] + [
                (e["source_type"], e["source_id"], e["edge_type"], "in")
                for e in queries.get_incoming_edges(conn, node_type, node_id)
            ]

            for other_type, other_id, edge_type, direction in neighbours:
                key = (other_type, other_id)
                if key in visited:
                    continue
                visited.add(key)
                if not entity_exists(conn, other_type, other_id):
                    logger.debug(f"Skipping missing entity {other_type}/{other_id}")
                    continue
                results.append({
                    "entity_type": other_type,
                    "entity_id": other_id,
                    "depth": depth,
                    "edge_type": edge_type,
                    "direction": direction,
                    "via_type": node_type,
                    "via_id": node_id,
                })
                next_frontier.append(key)

        if not next_frontier:
            break
        frontier = next_frontier

    return results
