"""
Deep, transparent mutation tracking for Python object graphs.

Every read, write and delete on an observed graph (including objects reached
through it) is intercepted, classified and reported through callbacks, while a
coalesced re-render of an HTML/text tree of the graph is scheduled. A separate
engine serializes graphs into tagged trees, diffs trees and computes structural
statistics, optionally on a worker executor.

Quick Start:
    >>> from objectwatch import create_context
    >>>
    >>> outputs = []
    >>> context = create_context(sink=outputs.append)
    >>> sprite = context.observe(
    ...     {'x': None, 'y': None},
    ...     on_new_property=lambda prop, value, target, event: print(f"new {prop}={value}"),
    ... )
    >>> sprite['x'] = 5
    new x=5
    >>> context.flush()  # or let the running asyncio loop pick it up
    1

Architecture:
    mutation -> Interceptor (proxy traps) -> ChangeTracker + callbacks
             -> RenderScheduler (one render per quantum)
             -> engine (local, or EngineTransport worker) -> render sink

Modules:
    - proxy: ObservedProxy and the Interceptor traps
    - tracker: identity-keyed dependency/path tracking
    - scheduler: render coalescing
    - engine: serialize, render, diff, analyze
    - tree_model: SerializedNode tagged union and result dataclasses
    - transport: request/response channel to an engine executor
    - observer: ObserverContext composition root
    - components: per-instance component registry
    - config: ObserverConfig and thread-local defaults
"""

# Configuration
from objectwatch.config import (
    ObserverConfig,
    set_default_config,
    get_default_config,
    reset_default_config,
)

# Events and options
from objectwatch.events import ChangeEvent, ObserverOptions

# Tracking and interception
from objectwatch.tracker import ChangeTracker
from objectwatch.proxy import Interceptor, ObservedProxy, unwrap, is_proxy, path_of

# Scheduling
from objectwatch.scheduler import RenderScheduler

# Tree model
from objectwatch.tree_model import (
    PrimitiveNode,
    CircularNode,
    FunctionNode,
    ErrorNode,
    ArrayNode,
    ObjectNode,
    SerializedNode,
    node_from_dict,
    ChangeRecord,
    GraphStats,
    Recommendation,
    AnalysisResult,
    RenderResult,
    RenderStats,
)

# Engine
from objectwatch.engine import serialize, render_tree, to_text, to_html, diff, analyze

# Transport
from objectwatch.transport import (
    EngineTransport,
    EngineError,
    TransportTerminatedError,
    handle_message,
)

# Composition root
from objectwatch.observer import ObserverContext, Observation, create_context
from objectwatch.components import ComponentRegistry

__all__ = [
    # Configuration
    'ObserverConfig',
    'set_default_config',
    'get_default_config',
    'reset_default_config',
    # Events and options
    'ChangeEvent',
    'ObserverOptions',
    # Tracking and interception
    'ChangeTracker',
    'Interceptor',
    'ObservedProxy',
    'unwrap',
    'is_proxy',
    'path_of',
    # Scheduling
    'RenderScheduler',
    # Tree model
    'PrimitiveNode',
    'CircularNode',
    'FunctionNode',
    'ErrorNode',
    'ArrayNode',
    'ObjectNode',
    'SerializedNode',
    'node_from_dict',
    'ChangeRecord',
    'GraphStats',
    'Recommendation',
    'AnalysisResult',
    'RenderResult',
    'RenderStats',
    # Engine
    'serialize',
    'render_tree',
    'to_text',
    'to_html',
    'diff',
    'analyze',
    # Transport
    'EngineTransport',
    'EngineError',
    'TransportTerminatedError',
    'handle_message',
    # Composition root
    'ObserverContext',
    'Observation',
    'create_context',
    'ComponentRegistry',
]

__version__ = '1.0.0'
__description__ = 'Deep transparent mutation tracking for Python object graphs'
