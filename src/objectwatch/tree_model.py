"""
Dataclasses for serialized trees, diffs and graph statistics.

SerializedNode is a tagged union: every node class carries a `kind` tag and
the path it was reached under. Trees contain no object references, only data,
so they can cross a process boundary and be exported with to_dict().

Design Philosophy: Correct by Construction
- Immutable nodes (frozen dataclasses)
- Acyclic by construction (repeat visits become CircularNode)
- Direct attribute access (no getattr fallbacks)
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class PrimitiveNode:
    """Leaf holding an atomic value (None, numbers, text, ...)."""
    path: str
    value: Any
    kind: ClassVar[str] = 'primitive'

    def to_dict(self) -> Dict:
        return {'type': self.kind, 'path': self.path, 'value': self.value}


@dataclass(frozen=True)
class CircularNode:
    """Repeat visit of an object already on this walk. Records the type name only."""
    path: str
    reference: str
    kind: ClassVar[str] = 'circular'

    def to_dict(self) -> Dict:
        return {'type': self.kind, 'path': self.path, 'reference': self.reference}


@dataclass(frozen=True)
class FunctionNode:
    """Callable leaf. Never entered."""
    path: str
    name: str
    kind: ClassVar[str] = 'function'

    def to_dict(self) -> Dict:
        return {'type': self.kind, 'path': self.path, 'name': self.name}


@dataclass(frozen=True)
class ErrorNode:
    """Property whose read raised."""
    path: str
    message: str
    kind: ClassVar[str] = 'error'

    def to_dict(self) -> Dict:
        return {'type': self.kind, 'path': self.path, 'message': self.message}


@dataclass(frozen=True)
class ArrayNode:
    path: str
    length: int
    items: Tuple['SerializedNode', ...]
    kind: ClassVar[str] = 'array'

    def to_dict(self) -> Dict:
        return {
            'type': self.kind,
            'path': self.path,
            'length': self.length,
            'items': [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class ObjectNode:
    """Mapping or instance; properties keep the source's enumeration order."""
    path: str
    name: str
    depth: int
    properties: Dict[Any, 'SerializedNode']
    kind: ClassVar[str] = 'object'

    def to_dict(self) -> Dict:
        return {
            'type': self.kind,
            'path': self.path,
            'name': self.name,
            'depth': self.depth,
            'properties': [
                {'key': key, 'value': value.to_dict()}
                for key, value in self.properties.items()
            ],
        }


SerializedNode = Union[PrimitiveNode, CircularNode, FunctionNode, ErrorNode, ArrayNode, ObjectNode]


def node_from_dict(data: Dict) -> SerializedNode:
    """Import a node exported with to_dict().

    Raises:
        ValueError: If the type tag is unknown
    """
    kind = data['type']
    path = data['path']
    if kind == 'primitive':
        return PrimitiveNode(path=path, value=data['value'])
    if kind == 'circular':
        return CircularNode(path=path, reference=data['reference'])
    if kind == 'function':
        return FunctionNode(path=path, name=data['name'])
    if kind == 'error':
        return ErrorNode(path=path, message=data['message'])
    if kind == 'array':
        return ArrayNode(
            path=path,
            length=data['length'],
            items=tuple(node_from_dict(item) for item in data['items']),
        )
    if kind == 'object':
        return ObjectNode(
            path=path,
            name=data['name'],
            depth=data.get('depth', 0),
            properties={prop['key']: node_from_dict(prop['value']) for prop in data['properties']},
        )
    raise ValueError(f"Unknown node type: {kind!r}")


# ========== DIFF ==========

CHANGE_KINDS = ('add', 'delete', 'typeChange', 'update', 'arrayResize')

# Fields exported by ChangeRecord.to_dict() for each kind
CHANGE_FIELDS = {
    'add': ('value',),
    'delete': ('old_value',),
    'typeChange': ('old_type', 'new_type', 'old_value', 'new_value'),
    'update': ('old_value', 'new_value'),
    'arrayResize': ('old_length', 'new_length'),
}


@dataclass(frozen=True)
class ChangeRecord:
    """One structural difference between two trees.

    - add: value (the new node)
    - delete: old_value (the removed node)
    - typeChange: old_type, new_type, old_value, new_value (nodes)
    - update: old_value, new_value (primitive values)
    - arrayResize: old_length, new_length
    """
    kind: str
    path: str
    value: Any = None
    old_value: Any = None
    new_value: Any = None
    old_type: Optional[str] = None
    new_type: Optional[str] = None
    old_length: Optional[int] = None
    new_length: Optional[int] = None

    def to_dict(self) -> Dict:
        """Export to dict, omitting fields that do not apply to this kind."""
        data: Dict[str, Any] = {'type': self.kind, 'path': self.path}
        for name in CHANGE_FIELDS.get(self.kind, ()):
            value = getattr(self, name)
            data[name] = value.to_dict() if hasattr(value, 'to_dict') else value
        return data


# ========== STATISTICS ==========

@dataclass
class GraphStats:
    object_count: int = 0
    primitive_count: int = 0
    function_count: int = 0
    array_count: int = 0
    circular_count: int = 0
    max_depth: int = 0
    processing_time: float = 0.0  # milliseconds

    @property
    def total_items(self) -> int:
        return self.object_count + self.primitive_count + self.function_count + self.array_count

    def to_dict(self) -> Dict:
        return {
            'object_count': self.object_count,
            'primitive_count': self.primitive_count,
            'function_count': self.function_count,
            'array_count': self.array_count,
            'circular_count': self.circular_count,
            'max_depth': self.max_depth,
            'processing_time': self.processing_time,
            'total_items': self.total_items,
        }


@dataclass(frozen=True)
class Recommendation:
    """Advisory note produced by analyze(). Informational only."""
    kind: str  # 'warning' | 'info' | 'performance'
    message: str
    metric: str


@dataclass(frozen=True)
class AnalysisResult:
    stats: GraphStats
    recommendations: Tuple[Recommendation, ...]
    should_use_worker: bool


@dataclass(frozen=True)
class RenderStats:
    processing_time: float  # milliseconds
    fragment_count: int
    visited_objects: int


@dataclass(frozen=True)
class RenderResult:
    """Output of render_tree(): the tree, both renderings and walk statistics."""
    tree: SerializedNode
    html: str
    text: str
    fragments: Dict[str, ObjectNode] = field(default_factory=dict)
    stats: Optional[RenderStats] = None


def iter_nodes(node: SerializedNode) -> List[SerializedNode]:
    """Flatten a tree depth-first, parents before children."""
    nodes: List[SerializedNode] = [node]
    if isinstance(node, ArrayNode):
        for item in node.items:
            nodes.extend(iter_nodes(item))
    elif isinstance(node, ObjectNode):
        for child in node.properties.values():
            nodes.extend(iter_nodes(child))
    return nodes
