"""
ObserverContext: composition root for observed object graphs.

A context owns every Observation it creates, the render sink the coalesced
renders are written to, and the status callbacks notified on writes and
deletes. There is no module-level registry: callers create a context, pass it
where it is needed and clear() it at teardown.

Lifecycle:
- observe(): wrap an instance, register it, render once
- mutations through the returned proxy: callbacks fire synchronously, one
  render per scheduling quantum
- clear(): cancel pending renders, terminate engine transports, drop everything
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from objectwatch.components import ComponentRegistry
from objectwatch.config import ObserverConfig, get_default_config
from objectwatch.engine import render_tree
from objectwatch.events import ObserverOptions
from objectwatch.proxy import Interceptor, ObservedProxy, unwrap
from objectwatch.scheduler import DeferFn, RenderScheduler
from objectwatch.tracker import ChangeTracker
from objectwatch.transport import EngineTransport

logger = logging.getLogger(__name__)

RenderSink = Callable[[str], None]
StatusCallback = Callable[[str], None]

OptionsLike = Union[ObserverOptions, dict, bool, None]


class Observation:
    """One observed instance with its interceptor, scheduler and optional transport."""

    def __init__(self, context: 'ObserverContext', instance: Any, options: ObserverOptions):
        self.context = context
        self.instance = unwrap(instance)
        self.options = options
        self.tracker = ChangeTracker()
        self.interceptor = Interceptor(
            options,
            self.tracker,
            on_mutation=self.schedule_render,
            on_status=context.emit_status,
        )
        self.scheduler = RenderScheduler(self.render, defer=context.defer)
        self.transport: Optional[EngineTransport] = None
        if options.use_worker:
            self.transport = EngineTransport(context.config)
        self.handle: ObservedProxy = self.interceptor.wrap(self.instance)

    def schedule_render(self) -> None:
        self.scheduler.request()

    def render(self) -> None:
        self.context.render(transport=self.transport)

    def configure(self, options: OptionsLike = None, **overrides) -> None:
        """Re-apply options, starting or terminating the engine transport as needed."""
        self.options = ObserverOptions.from_value(options, **overrides)
        self.interceptor.options = self.options
        if self.options.use_worker and self.transport is None:
            self.transport = EngineTransport(self.context.config)
        elif not self.options.use_worker and self.transport is not None:
            self.transport.terminate()
            self.transport = None

    def close(self) -> None:
        self.scheduler.cancel()
        if self.transport is not None:
            self.transport.terminate()
            self.transport = None
        self.interceptor.close()


class ObserverContext:
    """Registry of observed instances with explicit create/clear lifecycle.

    Thread safety: Not thread-safe (all operations expected on the owner's thread).
    Engine responses from a worker are handed back through the running asyncio
    loop when one exists.

    Args:
        sink: Receives each rendered output string; renders are abandoned while it is None
        config: Rendering/engine config (thread-local default if omitted)
        defer: Scheduling hook passed to every RenderScheduler
    """

    def __init__(
        self,
        sink: Optional[RenderSink] = None,
        config: Optional[ObserverConfig] = None,
        defer: Optional[DeferFn] = None,
    ):
        self.sink = sink
        self.config = config or get_default_config()
        self.defer = defer
        self.last_output: Optional[str] = None
        self._observations: List[Observation] = []
        self._status_callbacks: List[StatusCallback] = []
        self._components: Dict[int, ComponentRegistry] = {}

    # ========== OBSERVATION ==========

    def observe(self, instance: Any, options: OptionsLike = None, **overrides) -> ObservedProxy:
        """Start observing instance and return its proxy.

        Observing the same instance again returns the existing proxy.

        Args:
            instance: Structured object to observe (or a proxy of one)
            options: ObserverOptions, dict of options, or bool (observe_nested)
            **overrides: Individual options, e.g. on_new_property=callback

        Raises:
            TypeError: If instance is not a structured object
        """
        existing = self.observation_for(instance)
        if existing is not None:
            logger.debug(f"Already observing {type(existing.instance).__name__}")
            return existing.handle

        observation = Observation(self, instance, ObserverOptions.from_value(options, **overrides))
        self._observations.append(observation)
        logger.debug(
            f"Observing {type(observation.instance).__name__} "
            f"(nested={observation.options.observe_nested}, worker={observation.options.use_worker})"
        )
        observation.render()
        return observation.handle

    def unobserve(self, handle: Any) -> bool:
        """Stop observing one instance. Returns False if it was not observed."""
        observation = self.observation_for(handle)
        if observation is None:
            return False
        self._observations.remove(observation)
        self._components.pop(id(observation.instance), None)
        observation.close()
        self.render()
        return True

    def configure(self, handle: Any, options: OptionsLike = None, **overrides) -> None:
        """Re-apply options to an observed instance and re-render.

        Raises:
            KeyError: If handle is not observed by this context
        """
        observation = self.observation_for(handle)
        if observation is None:
            raise KeyError(f"{type(unwrap(handle)).__name__} instance is not observed")
        observation.configure(options, **overrides)
        observation.render()

    def clear(self) -> None:
        """Drop all observed instances and terminate their engine transports."""
        count = len(self._observations)
        for observation in self._observations:
            observation.close()
        self._observations.clear()
        self._components.clear()
        logger.info(f"Cleared observer context ({count} observation(s))")

    def observation_for(self, value: Any) -> Optional[Observation]:
        target = unwrap(value)
        for observation in self._observations:
            if observation.instance is target:
                return observation
        return None

    @property
    def observations(self) -> List[Observation]:
        return list(self._observations)

    @property
    def handles(self) -> List[ObservedProxy]:
        return [observation.handle for observation in self._observations]

    def components(self, handle: Any) -> ComponentRegistry:
        """Component registry for an observed instance, created on first use."""
        identity = id(unwrap(handle))
        registry = self._components.get(identity)
        if registry is None:
            registry = ComponentRegistry(handle)
            self._components[identity] = registry
        return registry

    def flush(self) -> int:
        """Run renders queued without a defer hook or event loop.

        Returns:
            Number of renders executed
        """
        return sum(observation.scheduler.flush() for observation in list(self._observations))

    # ========== STATUS SIGNAL ==========

    def add_status_callback(self, callback: StatusCallback) -> None:
        """Subscribe to status signals ("change" after writes, "delete" after deletions)."""
        if callback not in self._status_callbacks:
            self._status_callbacks.append(callback)

    def remove_status_callback(self, callback: StatusCallback) -> None:
        if callback in self._status_callbacks:
            self._status_callbacks.remove(callback)

    def emit_status(self, kind: str) -> None:
        for callback in self._status_callbacks:
            try:
                callback(kind)
            except Exception as e:
                logger.warning(f"Error in status callback: {e}")

    # ========== RENDERING ==========

    def render(self, transport: Optional[EngineTransport] = None) -> Optional[str]:
        """Render every observed instance to the sink.

        With a transport, serialization runs on the engine and the sink is
        written when the response arrives (None is returned).

        Returns:
            The rendered output for a local render, None otherwise
        """
        if self.sink is None:
            logger.error("No render sink configured; render abandoned")
            return None

        instances = [observation.instance for observation in self._observations]
        if transport is not None and instances:
            self._render_offloaded(transport, instances)
            return None

        output = self._compose([render_tree(instance, self.config) for instance in instances])
        self._emit(output)
        return output

    def _render_offloaded(self, transport: EngineTransport, instances: List[Any]) -> None:
        loop = _running_loop()

        def on_response(response: Dict[str, Any]) -> None:
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(self._deliver_offloaded, response)
            else:
                self._deliver_offloaded(response)

        transport.post('serialize', instances, callback=on_response, options={'batch': True})

    def _deliver_offloaded(self, response: Dict[str, Any]) -> None:
        if response['type'] == 'error':
            logger.error(f"Engine render failed: {response['error']['message']}")
            return
        if self.sink is None:
            logger.error("No render sink configured; render abandoned")
            return
        self._emit(self._compose(response['result']))

    def _compose(self, results: List[Any]) -> str:
        html_format = self.config.render_format == 'html'
        if not results:
            return self.config.empty_state_html if html_format else self.config.empty_state_text
        if html_format:
            body = ''.join(result.html for result in results)
            return f'<pre class="composition-tree">{body}</pre>'
        return '\n'.join(result.text for result in results)

    def _emit(self, output: str) -> None:
        self.last_output = output
        try:
            self.sink(output)
        except Exception as e:
            logger.error(f"Render sink failed: {e}")


def create_context(
    sink: Optional[RenderSink] = None,
    config: Optional[ObserverConfig] = None,
    defer: Optional[DeferFn] = None,
) -> ObserverContext:
    """Create an observer context; the caller owns it and must clear() it at teardown."""
    return ObserverContext(sink=sink, config=config, defer=defer)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
