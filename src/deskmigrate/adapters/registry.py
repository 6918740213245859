"""
AdapterRegistry - Maps component names to their source and target adapters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from deskmigrate.adapters.interface import SourceAdapter, TargetAdapter
from deskmigrate.exceptions import ValidationError

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """
    Registry of (SourceAdapter, TargetAdapter) pairs keyed by component name.

    Components without an explicit registration fall back to the default
    adapters, when given. A component with neither is rejected before any
    component of the job runs.

    Example:
        >>> registry = AdapterRegistry(default_source=source, default_target=target)
        >>> registry.register("apps", target=apps_target)
        >>> registry.check(["groups", "apps"])
    """

    def __init__(
        self,
        *,
        default_source: SourceAdapter | None = None,
        default_target: TargetAdapter | None = None,
    ) -> None:
        self._default_source = default_source
        self._default_target = default_target
        self._sources: dict[str, SourceAdapter] = {}
        self._targets: dict[str, TargetAdapter] = {}

    def register(
        self,
        component: str,
        *,
        source: SourceAdapter | None = None,
        target: TargetAdapter | None = None,
    ) -> None:
        if source is None and target is None:
            raise ValueError("register() needs a source or a target adapter")
        if source is not None:
            self._sources[component] = source
        if target is not None:
            self._targets[component] = target
        logger.debug("Registered adapters for %s", component)

    def source_for(self, component: str) -> SourceAdapter:
        adapter = self._sources.get(component, self._default_source)
        if adapter is None:
            raise ValidationError(
                f"No source adapter for component: {component}",
                unknown_components=[component],
            )
        return adapter

    def target_for(self, component: str) -> TargetAdapter:
        adapter = self._targets.get(component, self._default_target)
        if adapter is None:
            raise ValidationError(
                f"No target adapter for component: {component}",
                unknown_components=[component],
            )
        return adapter

    def has(self, component: str) -> bool:
        has_source = component in self._sources or self._default_source is not None
        has_target = component in self._targets or self._default_target is not None
        return has_source and has_target

    def check(self, components: Iterable[str]) -> None:
        """
        Ensure every component has both adapters.

        Raises:
            ValidationError: Naming every component that lacks one.
        """
        missing = [name for name in components if not self.has(name)]
        if missing:
            raise ValidationError(
                f"No adapters registered for components: {', '.join(missing)}",
                unknown_components=missing,
            )


__all__ = ["AdapterRegistry"]
