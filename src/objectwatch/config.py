"""
Observer configuration and thread-local default storage.

ObserverConfig is an immutable dataclass carrying rendering and engine
settings. A default instance lives in thread-local storage so a composition
root can install one config and every context, transport and engine call made
on that thread picks it up without explicit parameter passing.

Engine functions running on a worker never read the thread-local default: the
transport ships the caller's config alongside each request.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

RENDER_FORMATS = ("html", "text")

EMPTY_STATE_HTML = '<div class="empty-state">Object tree will appear here when changes are made</div>'
EMPTY_STATE_TEXT = "(no observed objects)"


@dataclass(frozen=True)
class ObserverConfig:
    """Settings shared by observer contexts, the render path and the engine."""

    indent_unit: str = "  "
    """Indentation emitted per tree depth level by to_text() and to_html()."""

    render_format: str = "html"
    """Output format handed to the render sink: "html" or "text"."""

    empty_state_html: str = EMPTY_STATE_HTML
    empty_state_text: str = EMPTY_STATE_TEXT

    use_threading: bool = field(
        default_factory=lambda: os.getenv('OBJECTWATCH_USE_THREADING', 'true').lower() == 'true'
    )
    """Use ThreadPoolExecutor instead of ProcessPoolExecutor for offloaded engine work.
    Reads from OBJECTWATCH_USE_THREADING environment variable."""

    max_workers: int = 1
    """Number of worker threads/processes behind one transport."""

    worker_item_threshold: int = 1000
    worker_depth_threshold: int = 10

    # Recommendation thresholds used by analyze()
    deep_nesting_threshold: int = 15
    circular_reference_threshold: int = 5
    large_object_threshold: int = 5000

    def __post_init__(self):
        if self.render_format not in RENDER_FORMATS:
            raise ValueError(
                f"render_format must be one of {RENDER_FORMATS}, got {self.render_format!r}"
            )
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")


_default_config = threading.local()


def set_default_config(config: ObserverConfig) -> None:
    """Install the default config for the current thread.

    Args:
        config: The config used by contexts and transports created without one
    """
    _default_config.value = config
    logger.debug(f"Default observer config set: {config}")


def get_default_config() -> ObserverConfig:
    """Get the current thread's default config, creating one on first use."""
    config: Optional[ObserverConfig] = getattr(_default_config, 'value', None)
    if config is None:
        config = ObserverConfig()
        _default_config.value = config
    return config


def reset_default_config() -> None:
    """Drop the current thread's default config. Used by tests."""
    if hasattr(_default_config, 'value'):
        del _default_config.value
