"""
Per-instance component registry.

Attaches component objects to an observed instance by class: register(Position)
instantiates Position() and assigns it to the instance as `position`. When the
instance is an observer proxy, the assignment goes through the interception
layer like any other write, so observers see the new property and the component
itself becomes observed.
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Dict, Type, TypeVar

from objectwatch.proxy import unwrap

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ComponentRegistry:
    """Components registered on one instance, keyed by component class."""

    def __init__(self, instance: Any):
        self.instance = instance
        self._components: Dict[type, Any] = {}

    @staticmethod
    def attribute_name(component_class: type) -> str:
        return component_class.__name__.lower()

    def exists(self, component_class: type) -> bool:
        return component_class in self._components

    def register(self, component_class: Type[T]) -> T:
        """Instantiate and attach component_class, or return the registered instance."""
        if component_class in self._components:
            return self._components[component_class]

        component = component_class()
        name = self.attribute_name(component_class)
        if isinstance(unwrap(self.instance), MutableMapping):
            self.instance[name] = component
        else:
            setattr(self.instance, name, component)

        self._components[component_class] = component
        logger.info(f"Registered {component_class.__name__} component")
        return component

    def get(self, component_class: Type[T]) -> T:
        """Registered component for component_class.

        Raises:
            KeyError: If component_class was never registered
        """
        return self._components[component_class]

    def __len__(self) -> int:
        return len(self._components)
