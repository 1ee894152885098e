"""
Interception layer: transparent proxies over observed objects.

ObservedProxy forwards attribute access (instances) and item access (mappings,
mutable sequences) to its Interceptor, which owns the traps:

- write: classify new vs changed through the ChangeTracker, wrap structured
  values, dispatch exactly one callback, schedule a render
- read: report access failures, lazily wrap nested structured values and store
  the wrapper back so later reads return the same proxy
- delete: report deletions of existing properties, schedule a render
- in-place container operations (slice assignment and deletion, list.append,
  dict.update, ...): compare the container before and after, and report every
  index or key that changed as if it had been written or deleted

One proxy per target identity is cached, so wrap(x) is wrap(x) and assigning
an object back into a graph that already holds it terminates. Only wrappers
stored in the graph are cached. close() puts raw targets back in place of
stored wrappers and turns every trap into a plain pass-through.
"""

import copy
import functools
import inspect
import logging
import types
from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from typing import Any, Callable, Dict, Optional, Tuple

from objectwatch.events import ChangeEvent, ObserverOptions
from objectwatch.introspection import is_structured, join_index, join_key, slot_names, type_name
from objectwatch.tracker import ChangeTracker

logger = logging.getLogger(__name__)

_MISSING = object()
_LOOKUP_ERRORS = (AttributeError, LookupError)

# Builtin methods that mutate their container in place
_SEQUENCE_MUTATORS = frozenset({'append', 'extend', 'insert', 'pop', 'remove', 'clear', 'reverse', 'sort'})
_MAPPING_MUTATORS = frozenset({'update', 'setdefault', 'pop', 'popitem', 'clear'})


class ObservedProxy:
    """Transparent wrapper routing reads, writes and deletes through an Interceptor.

    The proxy defines no public names of its own; every attribute and item is
    the target's. isinstance() checks see the target's class.
    """
    __slots__ = ('_observed_target', '_observed_interceptor', '_observed_path')

    def __init__(self, target: Any, interceptor: 'Interceptor', path: str):
        object.__setattr__(self, '_observed_target', target)
        object.__setattr__(self, '_observed_interceptor', interceptor)
        object.__setattr__(self, '_observed_path', path)

    @property
    def __class__(self):
        return type(self._observed_target)

    # === Attribute traps ===

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_observed_'):
            raise AttributeError(name)
        if name.startswith('__') and name.endswith('__'):
            return getattr(self._observed_target, name)
        return self._observed_interceptor.get(self, name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._observed_interceptor.set(self, name, value)

    def __delattr__(self, name: str) -> None:
        self._observed_interceptor.delete(self, name)

    # === Item traps ===

    def __getitem__(self, key: Any) -> Any:
        return self._observed_interceptor.get(self, key, item=True)

    def __setitem__(self, key: Any, value: Any) -> None:
        self._observed_interceptor.set(self, key, value, item=True)

    def __delitem__(self, key: Any) -> None:
        self._observed_interceptor.delete(self, key, item=True)

    # === Pass-through introspection ===

    def __iter__(self):
        target = self._observed_target
        if isinstance(target, Sequence) and not isinstance(target, (str, bytes)):
            return (self[index] for index in range(len(target)))
        return iter(target)

    def __len__(self) -> int:
        return len(self._observed_target)

    def __contains__(self, item: Any) -> bool:
        return unwrap(item) in self._observed_target

    def __bool__(self) -> bool:
        return bool(self._observed_target)

    def __dir__(self):
        return dir(self._observed_target)

    def __repr__(self) -> str:
        return repr(self._observed_target)

    def __str__(self) -> str:
        return str(self._observed_target)

    def __eq__(self, other: Any) -> bool:
        return self._observed_target == unwrap(other)

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash(self._observed_target)

    # Copies and pickles are taken of the raw target: snapshots never carry proxies.

    def __copy__(self) -> Any:
        return copy.copy(self._observed_target)

    def __deepcopy__(self, memo: Dict[int, Any]) -> Any:
        return copy.deepcopy(self._observed_target, memo)

    def __reduce_ex__(self, protocol):
        return self._observed_target.__reduce_ex__(protocol)


def unwrap(value: Any) -> Any:
    """Return the raw target behind a proxy, or value itself."""
    if type(value) is ObservedProxy:
        return object.__getattribute__(value, '_observed_target')
    return value


def is_proxy(value: Any) -> bool:
    return type(value) is ObservedProxy


def path_of(value: Any) -> str:
    """Canonical path a proxy's target was first reached under ("" for roots and raw values)."""
    if not is_proxy(value):
        return ''
    interceptor = object.__getattribute__(value, '_observed_interceptor')
    return interceptor.tracker.get_path(id(unwrap(value)))


# === Storage primitives (raw targets only) ===

def _is_index_access(target: Any, item: bool) -> bool:
    return item and isinstance(target, Sequence) and not isinstance(target, Mapping)


def _has_own(target: Any, prop: Any, item: bool) -> bool:
    if item:
        if isinstance(target, Mapping):
            return prop in target
        if isinstance(target, Sequence):
            return isinstance(prop, int) and -len(target) <= prop < len(target)
        return False
    own = getattr(target, '__dict__', None)
    if own is not None and prop in own:
        return True
    return prop in slot_names(type(target)) and hasattr(target, prop)


def _read(target: Any, prop: Any, item: bool) -> Any:
    if item:
        return target[prop]
    return getattr(target, prop)


def _peek(target: Any, prop: Any, item: bool) -> Any:
    try:
        return _read(target, prop, item)
    except _LOOKUP_ERRORS:
        return _MISSING


def _write(target: Any, prop: Any, value: Any, item: bool) -> None:
    if item:
        target[prop] = value
    else:
        setattr(target, prop, value)


def _remove(target: Any, prop: Any, item: bool) -> None:
    if item:
        del target[prop]
    else:
        delattr(target, prop)


def _differs(old_value: Any, new_value: Any) -> bool:
    """Identity for structured values, type + equality for everything else."""
    if old_value is _MISSING:
        return True
    old_raw, new_raw = unwrap(old_value), unwrap(new_value)
    if old_raw is new_raw:
        return False
    if is_structured(old_raw) or is_structured(new_raw):
        return True
    return type(old_raw) is not type(new_raw) or old_raw != new_raw


def _is_splice(target: Any, prop: Any, item: bool) -> bool:
    return item and isinstance(prop, slice) and isinstance(target, MutableSequence)


def _mutator_names(target: Any) -> frozenset:
    if isinstance(target, MutableMapping):
        return _MAPPING_MUTATORS
    if isinstance(target, MutableSequence):
        return _SEQUENCE_MUTATORS
    return frozenset()


def _snapshot(target: Any) -> Any:
    """Shallow copy of a container's entries, taken before an in-place operation."""
    if isinstance(target, Mapping):
        return dict(target)
    return list(target)


class Interceptor:
    """Owns the proxy cache and the read/write/delete traps for one observation.

    Callbacks are dispatched synchronously, in mutation order. A failing
    callback is logged and never aborts the write that triggered it.

    Args:
        options: Observation options (nesting flag and callbacks)
        tracker: Dependency/path tracker (a fresh one if omitted)
        on_mutation: Called after every write and delete (render scheduling)
        on_status: Called with "change" or "delete" (status signal sink)
    """

    def __init__(
        self,
        options: Optional[ObserverOptions] = None,
        tracker: Optional[ChangeTracker] = None,
        on_mutation: Optional[Callable[[], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.options = options if options is not None else ObserverOptions()
        self.tracker = tracker if tracker is not None else ChangeTracker()
        self._on_mutation = on_mutation
        self._on_status = on_status
        self._cache: Dict[int, ObservedProxy] = {}
        # (id(container), prop, item) -> container, for every wrapper written into a raw target
        self._stored: Dict[Tuple[int, Any, bool], Any] = {}
        self._closed = False

    # ========== WRAPPING ==========

    def wrap(self, target: Any, parent_path: str = '') -> ObservedProxy:
        """Return the proxy for target, creating it on first wrap.

        Args:
            target: A structured object (mapping, mutable sequence or attribute-carrying instance)
            parent_path: Path under which target is first reached ("" for a root)

        Raises:
            TypeError: If target is None, atomic or callable
        """
        if is_proxy(target):
            return target
        identity = id(target)
        cached = self._cache.get(identity)
        if cached is not None:
            return cached
        if not is_structured(target):
            raise TypeError(f"Cannot observe {type_name(target)} value: {target!r}")

        proxy = ObservedProxy(target, self, parent_path)
        self._cache[identity] = proxy
        self.tracker.assign_path(identity, parent_path)
        logger.debug(f"Wrapped {type_name(target)} at path={parent_path!r}")
        return proxy

    def is_wrapped(self, value: Any) -> bool:
        return id(unwrap(value)) in self._cache

    def release(self, target: Any) -> None:
        """Drop the cache and tracker entries for target."""
        identity = id(unwrap(target))
        self._cache.pop(identity, None)
        self.tracker.forget(identity)

    def clear(self) -> None:
        self._cache.clear()
        self.tracker.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop intercepting.

        Wrappers stored into the observed graph are replaced by their raw
        targets, and proxies still held by callers pass every operation
        straight through without callbacks or render requests.
        """
        restored = 0
        for (_, prop, item), container in self._stored.items():
            current = _peek(container, prop, item)
            if not is_proxy(current) or object.__getattribute__(current, '_observed_interceptor') is not self:
                continue
            try:
                _write(container, prop, unwrap(current), item)
                restored += 1
            except (AttributeError, TypeError):
                logger.debug(f"Read-only storage for {prop!r}; wrapper left in place")
        self._stored.clear()
        self._closed = True
        self.clear()
        logger.debug(f"Closed interceptor ({restored} stored wrapper(s) restored)")

    def __len__(self) -> int:
        return len(self._cache)

    # ========== TRAPS ==========

    def get(self, proxy: ObservedProxy, prop: Any, item: bool = False) -> Any:
        target = unwrap(proxy)
        path = object.__getattribute__(proxy, '_observed_path')
        try:
            value = _read(target, prop, item)
        except _LOOKUP_ERRORS:
            if not self._closed and not _is_dunder(prop):
                self._dispatch('on_access_failure', prop, None, target, ChangeEvent.create(prop, path))
            raise

        if self._closed or is_proxy(value):
            return value

        if self.options.observe_nested and is_structured(value):
            if not _has_own(target, prop, item):
                # Computed values, slices and class attributes are not part of the graph
                return self._cache.get(id(value), value)
            wrapped = self.wrap(value, self._child_path(target, path, prop, item))
            try:
                self._store(target, prop, wrapped, item)
            except (AttributeError, TypeError):
                logger.debug(f"Read-only storage for {prop!r} at path={path!r}; wrapper not stored")
            return wrapped

        if inspect.ismethod(value) and value.__self__ is target:
            return types.MethodType(value.__func__, proxy)

        if not item and prop in _mutator_names(target) and callable(value):
            return self._wrap_mutator(proxy, value)

        return value

    def set(self, proxy: ObservedProxy, prop: Any, value: Any, item: bool = False) -> None:
        target = unwrap(proxy)
        if self._closed:
            _write(target, prop, value, item)
            return
        if _is_splice(target, prop, item):
            self._mutate(proxy, functools.partial(_write, target, prop, value, item))
            return

        path = object.__getattribute__(proxy, '_observed_path')
        old_value = _peek(target, prop, item)
        # None-valued slots are unset declarations, not existing values
        had_property = _has_own(target, prop, item) and old_value is not None

        new_value = value
        if self.options.observe_nested and not is_proxy(value) and is_structured(value):
            new_value = self.wrap(value, self._child_path(target, path, prop, item))

        self._store(target, prop, new_value, item)
        self._report_write(target, path, prop, old_value, had_property, new_value)

        self._signal('change')
        self._mutated()

    def delete(self, proxy: ObservedProxy, prop: Any, item: bool = False) -> None:
        target = unwrap(proxy)
        if self._closed:
            _remove(target, prop, item)
            return
        if _is_splice(target, prop, item):
            self._mutate(proxy, functools.partial(_remove, target, prop, item))
            return

        path = object.__getattribute__(proxy, '_observed_path')
        had_property = _has_own(target, prop, item)
        old_value = _peek(target, prop, item)
        try:
            _remove(target, prop, item)
        except _LOOKUP_ERRORS:
            self._mutated()
            raise

        if had_property:
            self._report_delete(target, path, prop, _public(old_value))
            self._signal('delete')

        self._mutated()

    # ========== IN-PLACE CONTAINER OPERATIONS ==========

    def _wrap_mutator(self, proxy: ObservedProxy, method: Callable) -> Callable:
        @functools.wraps(method)
        def mutator(*args, **kwargs):
            return self._mutate(proxy, functools.partial(method, *args, **kwargs))
        return mutator

    def _mutate(self, proxy: ObservedProxy, operation: Callable[[], Any]) -> Any:
        """Run an in-place operation on a container and report what it changed.

        Each index or key whose value differs afterwards is reported like a
        write (new or changed); entries that disappeared are reported as
        deletions. A render is scheduled even if the operation raises.
        """
        target = unwrap(proxy)
        before = _snapshot(target)
        try:
            return operation()
        finally:
            if not self._closed:
                self._reconcile(proxy, target, before)

    def _reconcile(self, proxy: ObservedProxy, target: Any, before: Any) -> None:
        path = object.__getattribute__(proxy, '_observed_path')
        if isinstance(target, Mapping):
            current = list(target.keys())
            removed = [key for key in before if key not in target]
        else:
            current = range(len(target))
            removed = range(len(target), len(before))

        changed = False
        for key in current:
            if isinstance(before, dict):
                old_value = before.get(key, _MISSING)
            else:
                old_value = before[key] if key < len(before) else _MISSING
            new_value = target[key]
            if old_value is not _MISSING and not _differs(old_value, new_value):
                continue
            if self.options.observe_nested and not is_proxy(new_value) and is_structured(new_value):
                new_value = self.wrap(new_value, self._child_path(target, path, key, True))
                self._store(target, key, new_value, True)
            had_property = old_value is not _MISSING and old_value is not None
            self._report_write(target, path, key, old_value, had_property, new_value)
            changed = True

        for key in removed:
            self._report_delete(target, path, key, before[key])

        if changed:
            self._signal('change')
        if removed:
            self._signal('delete')
        self._mutated()

    # ========== INTERNALS ==========

    def _store(self, target: Any, prop: Any, value: Any, item: bool) -> None:
        _write(target, prop, value, item)
        if is_proxy(value):
            self._stored[(id(target), prop, item)] = target

    def _report_write(self, target: Any, path: str, prop: Any, old_value: Any,
                      had_property: bool, new_value: Any) -> None:
        identity = id(target)
        was_tracked = self.tracker.has_dependency(identity, prop)
        event = ChangeEvent.create(prop, path)
        self.tracker.record_change(identity, prop, path)

        if not was_tracked and not had_property:
            self._dispatch('on_new_property', prop, new_value, target, event)
        elif _differs(old_value, new_value):
            self._dispatch('on_property_change', prop, _public(old_value), new_value, target, event)

    def _report_delete(self, target: Any, path: str, prop: Any, old_value: Any) -> None:
        event = ChangeEvent.create(prop, path)
        self._dispatch('on_property_delete', prop, old_value, target, event)
        self.tracker.remove_dependency(id(target), prop)

    @staticmethod
    def _child_path(target: Any, path: str, prop: Any, item: bool) -> str:
        if _is_index_access(target, item):
            return join_index(path, prop)
        return join_key(path, prop)

    def _dispatch(self, hook_name: str, *args) -> None:
        callback = getattr(self.options, hook_name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Error in {hook_name} callback: {e}")

    def _signal(self, kind: str) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(kind)
        except Exception as e:
            logger.warning(f"Error in status callback: {e}")

    def _mutated(self) -> None:
        if self._on_mutation is not None:
            self._on_mutation()


def _is_dunder(prop: Any) -> bool:
    return isinstance(prop, str) and prop.startswith('__') and prop.endswith('__')


def _public(value: Any) -> Any:
    return None if value is _MISSING else value
