"""
Tree serialization, rendering, diff and analysis engine.

Pure functions over object graphs and SerializedNode trees. Nothing here
touches observer state, so every function can run on the caller's thread or
on a transport worker.

Every walk is call-scoped: the visited set is created per top-level call and
discarded afterwards. Consecutive calls re-walk unchanged subtrees.
"""

import html
import logging
import time
from typing import Any, Dict, List, Optional

from objectwatch.config import ObserverConfig, get_default_config
from objectwatch.introspection import (
    function_name,
    is_array_like,
    is_atomic,
    join_index,
    join_key,
    own_keys,
    read_property,
    type_name,
)
from objectwatch.proxy import unwrap
from objectwatch.tree_model import (
    AnalysisResult,
    ArrayNode,
    ChangeRecord,
    CircularNode,
    ErrorNode,
    FunctionNode,
    GraphStats,
    ObjectNode,
    PrimitiveNode,
    Recommendation,
    RenderResult,
    RenderStats,
    SerializedNode,
)

logger = logging.getLogger(__name__)


# ========== SERIALIZATION ==========

class TreeSerializer:
    """Depth-first walk of an object graph into a SerializedNode tree.

    One instance per top-level call. Visited objects are held strongly for the
    duration of the walk so their ids cannot be reused by temporaries created
    by property getters.
    """

    def __init__(self):
        self._visited: Dict[int, Any] = {}
        self.fragments: Dict[str, ObjectNode] = {}

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    def serialize(self, value: Any, path: str = '', depth: int = 0) -> SerializedNode:
        value = unwrap(value)

        if is_atomic(value):
            return PrimitiveNode(path=path, value=value)

        if id(value) in self._visited:
            return CircularNode(path=path, reference=type_name(value))

        if is_array_like(value):
            self._visited[id(value)] = value
            items = tuple(
                self.serialize(item, join_index(path, index), depth + 1)
                for index, item in enumerate(value)
            )
            return ArrayNode(path=path, length=len(items), items=items)

        if callable(value):
            return FunctionNode(path=path, name=function_name(value))

        self._visited[id(value)] = value
        properties: Dict[Any, SerializedNode] = {}
        for key in own_keys(value):
            prop_path = join_key(path, key)
            try:
                child = read_property(value, key)
            except Exception as e:
                logger.debug(f"Property read failed at {prop_path!r}: {e}")
                properties[key] = ErrorNode(path=prop_path, message=str(e))
                continue
            properties[key] = self.serialize(child, prop_path, depth + 1)

        node = ObjectNode(path=path, name=type_name(value), depth=depth, properties=properties)
        self.fragments[path] = node
        return node


def serialize(root: Any) -> SerializedNode:
    """Serialize root into a tagged, path-annotated tree.

    Classification order: primitive, circular, array, callable, object.
    Errors raised while reading one property become ErrorNode leaves.
    """
    return TreeSerializer().serialize(root)


def render_tree(root: Any, config: Optional[ObserverConfig] = None) -> RenderResult:
    """Serialize root and render it, with walk statistics.

    Returns:
        RenderResult with tree, html, text, fragments (path -> ObjectNode) and stats
    """
    config = config or get_default_config()
    start = time.perf_counter()
    serializer = TreeSerializer()
    tree = serializer.serialize(root)
    processing_time = (time.perf_counter() - start) * 1000

    return RenderResult(
        tree=tree,
        html=to_html(tree, indent_unit=config.indent_unit),
        text=to_text(tree, indent_unit=config.indent_unit),
        fragments=dict(serializer.fragments),
        stats=RenderStats(
            processing_time=processing_time,
            fragment_count=len(serializer.fragments),
            visited_objects=serializer.visited_count,
        ),
    )


# ========== RENDERING ==========

_NO_KEY = object()


def _format_value(value: Any) -> str:
    return 'None' if value is None else str(value)


def to_text(node: SerializedNode, indent_unit: str = '  ') -> str:
    """Render a tree as indented plain text, one line per node."""
    return '\n'.join(_text_lines(node, 0, indent_unit, _NO_KEY))


def _text_lines(node: SerializedNode, depth: int, unit: str, key: Any) -> List[str]:
    pad = unit * depth
    label = '' if key is _NO_KEY else f'{key}: '

    if isinstance(node, PrimitiveNode):
        return [f'{pad}{label}{_format_value(node.value)}']
    if isinstance(node, CircularNode):
        return [f'{pad}{label}* [circular reference to {node.reference}]']
    if isinstance(node, FunctionNode):
        return [f'{pad}{label}{node.name}()']
    if isinstance(node, ErrorNode):
        return [f'{pad}{label}Error: {node.message}']
    if isinstance(node, ArrayNode):
        lines = [f'{pad}{label}Array[{node.length}]']
        for item in node.items:
            lines.extend(_text_lines(item, depth + 1, unit, _NO_KEY))
        return lines
    if isinstance(node, ObjectNode):
        lines = [f'{pad}{label}+ {node.name}']
        for child_key, child in node.properties.items():
            lines.extend(_text_lines(child, depth + 1, unit, child_key))
        return lines
    return [f'{pad}{label}Unknown type: {getattr(node, "kind", type(node).__name__)}']


def to_html(node: SerializedNode, depth: int = 0, indent_unit: str = '  ') -> str:
    """Render a tree as indented HTML fragments carrying data-path attributes."""
    indent = indent_unit * depth
    path = html.escape(node.path, quote=True)

    if isinstance(node, PrimitiveNode):
        return f'{indent}<span class="property" data-path="{path}">{html.escape(_format_value(node.value))}</span>\n'

    if isinstance(node, CircularNode):
        return (
            f'{indent}<span class="circular" data-path="{path}">'
            f'* [circular reference to {html.escape(node.reference)}]</span>\n'
        )

    if isinstance(node, FunctionNode):
        return f'{indent}<span class="function" data-path="{path}">{html.escape(node.name)}()</span>\n'

    if isinstance(node, ErrorNode):
        return f'{indent}<span class="error" data-path="{path}">Error: {html.escape(node.message)}</span>\n'

    if isinstance(node, ArrayNode):
        parts = [f'{indent}<div class="array-node" data-path="{path}">Array[{node.length}]\n']
        for item in node.items:
            parts.append(to_html(item, depth + 1, indent_unit))
        parts.append(f'{indent}</div>\n')
        return ''.join(parts)

    if isinstance(node, ObjectNode):
        parts = [f'{indent}<div class="object-node" data-path="{path}">+ {html.escape(node.name)}\n']
        for key, child in node.properties.items():
            parts.append(f'{indent}{indent_unit}{html.escape(str(key))}: ')
            if isinstance(child, PrimitiveNode):
                child_path = html.escape(child.path, quote=True)
                parts.append(
                    f'<span class="property" data-path="{child_path}">'
                    f'{html.escape(_format_value(child.value))}</span>\n'
                )
            else:
                parts.append('\n' + to_html(child, depth + 1, indent_unit))
        parts.append(f'{indent}</div>\n')
        return ''.join(parts)

    return f'{indent}<span class="unknown">Unknown type: {html.escape(str(getattr(node, "kind", "")))}</span>\n'


# ========== DIFF ==========

def _primitive_differs(old_value: Any, new_value: Any) -> bool:
    """Type + equality, so 1 -> True and 1 -> 1.0 are updates."""
    if old_value is new_value:
        return False
    return type(old_value) is not type(new_value) or old_value != new_value


class TreeDiffer:
    """Structural comparison of two trees keyed by path.

    A per-call set of visited paths guarantees each path is compared once.
    """

    def __init__(self):
        self._visited_paths = set()
        self.changes: List[ChangeRecord] = []

    def compare(self, old: Optional[SerializedNode], new: Optional[SerializedNode], path: str = '') -> None:
        if path in self._visited_paths:
            return
        self._visited_paths.add(path)

        if old is None and new is None:
            return
        if old is None:
            self.changes.append(ChangeRecord(kind='add', path=path, value=new))
            return
        if new is None:
            self.changes.append(ChangeRecord(kind='delete', path=path, old_value=old))
            return

        if old.kind != new.kind:
            self.changes.append(ChangeRecord(
                kind='typeChange',
                path=path,
                old_type=old.kind,
                new_type=new.kind,
                old_value=old,
                new_value=new,
            ))
            return

        if isinstance(new, PrimitiveNode):
            if _primitive_differs(old.value, new.value):
                self.changes.append(ChangeRecord(
                    kind='update', path=path, old_value=old.value, new_value=new.value,
                ))
        elif isinstance(new, ObjectNode):
            for key, new_child in new.properties.items():
                self.compare(old.properties.get(key), new_child, join_key(path, key))
            for key, old_child in old.properties.items():
                if key not in new.properties:
                    self.compare(old_child, None, join_key(path, key))
        elif isinstance(new, ArrayNode):
            if old.length != new.length:
                self.changes.append(ChangeRecord(
                    kind='arrayResize', path=path, old_length=old.length, new_length=new.length,
                ))
            for index in range(max(len(old.items), len(new.items))):
                self.compare(
                    old.items[index] if index < len(old.items) else None,
                    new.items[index] if index < len(new.items) else None,
                    join_index(path, index),
                )


def diff(old_tree: Optional[SerializedNode], new_tree: Optional[SerializedNode], path: str = '') -> List[ChangeRecord]:
    """Compare two trees and return the change set (empty for identical trees).

    Rules, in order: add, delete, typeChange (no recursion), primitive update,
    object key union, array resize followed by pairwise index comparison.
    """
    differ = TreeDiffer()
    differ.compare(old_tree, new_tree, path)
    return differ.changes


# ========== ANALYSIS ==========

class GraphAnalyzer:
    """Single depth-first pass accumulating structural counts."""

    def __init__(self):
        self._visited: Dict[int, Any] = {}
        self.stats = GraphStats()

    def visit(self, value: Any, depth: int = 0) -> None:
        stats = self.stats
        stats.max_depth = max(stats.max_depth, depth)
        value = unwrap(value)

        if is_atomic(value):
            stats.primitive_count += 1
            return

        if id(value) in self._visited:
            stats.circular_count += 1
            return
        self._visited[id(value)] = value

        if is_array_like(value):
            stats.array_count += 1
            for item in value:
                self.visit(item, depth + 1)
        elif callable(value):
            stats.function_count += 1
        else:
            stats.object_count += 1
            for key in own_keys(value):
                try:
                    child = read_property(value, key)
                except Exception as e:
                    logger.debug(f"Skipping unreadable property {key!r}: {e}")
                    continue
                self.visit(child, depth + 1)


def analyze(root: Any, config: Optional[ObserverConfig] = None) -> AnalysisResult:
    """Compute structural statistics and advisory recommendations for a graph."""
    config = config or get_default_config()
    start = time.perf_counter()
    analyzer = GraphAnalyzer()
    analyzer.visit(root)
    stats = analyzer.stats
    stats.processing_time = (time.perf_counter() - start) * 1000

    return AnalysisResult(
        stats=stats,
        recommendations=tuple(generate_recommendations(stats, config)),
        should_use_worker=(
            stats.total_items > config.worker_item_threshold
            or stats.max_depth > config.worker_depth_threshold
        ),
    )


def generate_recommendations(stats: GraphStats, config: Optional[ObserverConfig] = None) -> List[Recommendation]:
    config = config or get_default_config()
    recommendations = []

    if stats.max_depth > config.deep_nesting_threshold:
        recommendations.append(Recommendation(
            kind='warning',
            message='Very deep object nesting detected. Consider flattening structure.',
            metric=f'Max depth: {stats.max_depth}',
        ))

    if stats.circular_count > config.circular_reference_threshold:
        recommendations.append(Recommendation(
            kind='info',
            message='Multiple circular references found. This is normal but affects rendering performance.',
            metric=f'Circular refs: {stats.circular_count}',
        ))

    if stats.total_items > config.large_object_threshold:
        recommendations.append(Recommendation(
            kind='performance',
            message='Large object detected. Consider offloading engine work to a worker.',
            metric=f'Total items: {stats.total_items}',
        ))

    return recommendations
