"""
Conversión de valores nativos del driver Neo4j a estructuras JSON-safe.

Este módulo transforma lo que devuelve el driver (Record, Node, Relationship,
Path, tipos temporales, listas y mapas anidados) en árboles compuestos solo
por None, números, strings, booleanos, listas y dicts con claves string.

Funciones principales:
    - convert_value(): Conversión recursiva y total de un valor
    - record_to_dict(): Registro → dict {columna: valor convertido}
    - summarize(): ResultSummary → {queryType, counters, timing}

Formas de salida:
    Node:         {"identity": int, "labels": [str], "properties": {...}}
    Relationship: {"identity": int, "type": str, "start": int, "end": int,
                   "properties": {...}}
    Path:         {"nodes": [...], "relationships": [...]}

Notas:
    - Los enteros de Python ya son de precisión arbitraria y se devuelven tal
      cual; un cliente JavaScript perderá precisión por encima de 2**53.
    - Floats no finitos (NaN, Infinity) se convierten a None porque JSON no
      los admite.
    - La detección de Node/Relationship va antes que la de mapas: un Node
      también expone items() y se confundiría con un dict.
"""

from __future__ import annotations

import math
import warnings
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from neo4j.graph import Node, Path, Relationship

COUNTER_FIELDS = (
    ("nodes_created", "nodesCreated"),
    ("nodes_deleted", "nodesDeleted"),
    ("relationships_created", "relationshipsCreated"),
    ("relationships_deleted", "relationshipsDeleted"),
    ("properties_set", "propertiesSet"),
    ("labels_added", "labelsAdded"),
    ("labels_removed", "labelsRemoved"),
    ("indexes_added", "indexesAdded"),
    ("indexes_removed", "indexesRemoved"),
    ("constraints_added", "constraintsAdded"),
    ("constraints_removed", "constraintsRemoved"),
    ("system_updates", "systemUpdates"),
)


def convert_value(value: Any) -> Any:
    if value is None:
        return None
    if _is_node(value):
        return _node_to_dict(value)
    if _is_relationship(value):
        return _relationship_to_dict(value)
    if _is_path(value):
        return {
            "nodes": [_node_to_dict(node) for node in getattr(value, "nodes", [])],
            "relationships": [_relationship_to_dict(rel) for rel in getattr(value, "relationships", [])],
        }
    if isinstance(value, bool):
        return value
    # neo4j.time.Duration subclasses tuple; it must reach its formatter first
    if callable(getattr(value, "iso_format", None)):
        return value.iso_format()
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): convert_value(val) for key, val in value.items()}
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [convert_value(item) for item in value]
    return _convert_scalar(value)


def record_to_dict(record: Any) -> Dict[str, Any]:
    return {str(key): convert_value(value) for key, value in getattr(record, "items", lambda: [])()}


def summarize(summary: Any) -> Dict[str, Any]:
    """Resumen de ejecución en la forma que consume el cliente web."""
    return {
        "queryType": getattr(summary, "query_type", None),
        "counters": _counters_to_dict(getattr(summary, "counters", None)),
        "timing": {
            "resultAvailableAfter": getattr(summary, "result_available_after", None),
            "resultConsumedAfter": getattr(summary, "result_consumed_after", None),
        },
    }


def _counters_to_dict(counters: Any) -> Dict[str, int]:
    if counters is None:
        return {}
    return {camel: int(getattr(counters, attr, 0) or 0) for attr, camel in COUNTER_FIELDS}


def _convert_scalar(value: Any) -> Any:
    # neo4j.time types expose iso_format(); stdlib datetime/date expose isoformat()
    for attr in ("iso_format", "isoformat"):
        formatter = getattr(value, attr, None)
        if callable(formatter):
            return formatter()
    return value


def _legacy_id(value: Any) -> Optional[int]:
    # Entity.id is deprecated in driver 5.x in favour of element_id (a string)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        identity = getattr(value, "id", None)
    return identity


def _node_to_dict(node: Any) -> Dict[str, Any]:
    return {
        "identity": _legacy_id(node),
        "labels": sorted(str(label) for label in getattr(node, "labels", [])),
        "properties": _coerce_properties(node),
    }


def _relationship_to_dict(rel: Any) -> Dict[str, Any]:
    return {
        "identity": _legacy_id(rel),
        "type": getattr(rel, "type", None),
        "start": _legacy_id(getattr(rel, "start_node", None)),
        "end": _legacy_id(getattr(rel, "end_node", None)),
        "properties": _coerce_properties(rel),
    }


def _coerce_properties(entity: Any) -> Dict[str, Any]:
    items = getattr(entity, "items", None)
    if callable(items):
        return {str(key): convert_value(val) for key, val in items()}
    return {}


def _is_node(value: Any) -> bool:
    if isinstance(value, Node):
        return True
    if isinstance(value, Mapping):
        return False
    return hasattr(value, "labels") and hasattr(value, "id") and hasattr(value, "items")


def _is_relationship(value: Any) -> bool:
    if isinstance(value, Relationship):
        return True
    if isinstance(value, Mapping):
        return False
    return (
        hasattr(value, "type")
        and hasattr(value, "start_node")
        and hasattr(value, "end_node")
        and hasattr(value, "items")
    )


def _is_path(value: Any) -> bool:
    if isinstance(value, Path):
        return True
    if isinstance(value, Mapping):
        return False
    return hasattr(value, "nodes") and hasattr(value, "relationships")
