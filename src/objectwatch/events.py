"""
Change events and observation options.
"""

import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Optional, Union

from objectwatch.introspection import join_index, join_key


@dataclass(frozen=True)
class ChangeEvent:
    """Immutable record handed to every observer callback.

    path is the route to the object whose property was touched; the property
    itself is passed to callbacks separately (and kept here as prop), so
    writing handle.a.b carries path "a".
    """
    path: str
    prop: Any
    timestamp: int  # wall clock, milliseconds

    @property
    def full_path(self) -> str:
        """Route to the property itself: "a.b", "b" at the root, "items[0]" for indices."""
        if isinstance(self.prop, int) and not isinstance(self.prop, bool):
            return join_index(self.path, self.prop)
        return join_key(self.path, self.prop)

    @classmethod
    def create(cls, prop: Any, path: str) -> 'ChangeEvent':
        """Create an event stamped with the current time."""
        return cls(path=path, prop=prop, timestamp=int(time.time() * 1000))


# Callback signatures (all optional)
NewPropertyCallback = Callable[[Any, Any, Any, ChangeEvent], None]
PropertyChangeCallback = Callable[[Any, Any, Any, Any, ChangeEvent], None]
PropertyDeleteCallback = Callable[[Any, Any, Any, ChangeEvent], None]
AccessFailureCallback = Callable[[Any, Any, Any, ChangeEvent], None]


@dataclass
class ObserverOptions:
    """Per-observation options.

    observe_nested: recursively wrap nested structured values (default True)
    use_worker: route engine calls through an EngineTransport (default False)
    on_new_property(prop, value, target, event)
    on_property_change(prop, old_value, new_value, target, event)
    on_property_delete(prop, old_value, target, event)
    on_access_failure(prop, value, target, event)
    """
    observe_nested: bool = True
    use_worker: bool = False
    on_new_property: Optional[NewPropertyCallback] = None
    on_property_change: Optional[PropertyChangeCallback] = None
    on_property_delete: Optional[PropertyDeleteCallback] = None
    on_access_failure: Optional[AccessFailureCallback] = None

    @classmethod
    def from_value(cls, options: Union['ObserverOptions', dict, bool, None] = None, **overrides) -> 'ObserverOptions':
        """Build options from the accepted shorthand forms.

        Args:
            options: ObserverOptions, a dict of option names, a bool (observe_nested) or None
            **overrides: Individual option values applied last

        Raises:
            TypeError: If an unknown option name is given
        """
        if isinstance(options, ObserverOptions):
            values = {f.name: getattr(options, f.name) for f in fields(cls)}
        elif isinstance(options, bool):
            values = {'observe_nested': options}
        elif options is None:
            values = {}
        else:
            values = dict(options)
        values.update(overrides)
        return cls(**values)
