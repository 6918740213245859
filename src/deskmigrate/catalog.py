"""
Component catalog: the fixed, ordered list of migratable component types.

The order encodes the dependency structure between helpdesk configuration
entities: a type may only reference types that come strictly earlier. The
orchestrator always runs components in catalog order, regardless of the
order in which a job lists them.

Example:
    >>> DEFAULT_CATALOG.ordered_list(["macros", "groups"])
    ['groups', 'macros']
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from deskmigrate.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceField:
    """
    A record field holding source-instance ids of another component type.

    Attributes:
        field: Name of the field in the source record.
        component: Component type the ids belong to.
    """

    field: str
    component: str


@dataclass(frozen=True)
class ComponentType:
    """A migratable kind of configuration entity."""

    name: str
    references: tuple[ReferenceField, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("component name must not be empty")


@dataclass(frozen=True)
class OrderViolation:
    """A declared reference that does not point strictly backwards."""

    component: str
    field: str
    referenced: str

    def __str__(self) -> str:
        return f"{self.component}.{self.field} -> {self.referenced}"


class ComponentCatalog:
    """
    Immutable ordered list of component types.

    Args:
        components: Component types in migration order.
        strict: Reject declared references that point forward or at
            unknown types.

    Raises:
        ValueError: If a component name appears twice.
        ValidationError: If ``strict`` and the references are inconsistent.
    """

    def __init__(self, components: Iterable[ComponentType], *, strict: bool = True) -> None:
        self._components: tuple[ComponentType, ...] = tuple(components)
        self._positions: dict[str, int] = {}
        for index, component in enumerate(self._components):
            if component.name in self._positions:
                raise ValueError(f"Duplicate component in catalog: {component.name}")
            self._positions[component.name] = index
        if strict:
            self.validate()

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self._components)

    def __iter__(self) -> Iterator[ComponentType]:
        return iter(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __contains__(self, name: object) -> bool:
        return name in self._positions

    def get(self, name: str) -> ComponentType:
        if name not in self._positions:
            raise ValidationError(
                f"Unknown component: {name}",
                unknown_components=[name],
            )
        return self._components[self._positions[name]]

    def position(self, name: str) -> int:
        try:
            return self._positions[name]
        except KeyError:
            raise ValidationError(
                f"Unknown component: {name}",
                unknown_components=[name],
            ) from None

    def ordered_list(self, requested: Iterable[str]) -> list[str]:
        """
        Order a requested set of component names by catalog position.

        Duplicates in ``requested`` collapse to one entry.

        Args:
            requested: Component names in any order.

        Returns:
            The requested names, in catalog order.

        Raises:
            ValidationError: If any name is not in the catalog. The error
                names every unknown component.
        """
        wanted = list(dict.fromkeys(requested))
        unknown = [name for name in wanted if name not in self._positions]
        if unknown:
            raise ValidationError(
                f"Unknown components: {', '.join(unknown)}",
                unknown_components=unknown,
            )
        return sorted(wanted, key=self._positions.__getitem__)

    def resolve_components(
        self,
        components: Sequence[str] | None = None,
        ignored: Sequence[str] | None = None,
    ) -> list[str]:
        """
        Compute the ordered list a job will migrate.

        With ``components`` given, that set is used; otherwise the whole
        catalog. Names in ``ignored`` are then removed. Both lists are
        checked against the catalog.

        Raises:
            ValidationError: If any name in either list is unknown.
        """
        ignored_list = list(ignored or ())
        requested = list(self.names) if components is None else list(components)

        unknown = [
            name
            for name in dict.fromkeys([*requested, *ignored_list])
            if name not in self._positions
        ]
        if unknown:
            raise ValidationError(
                f"Unknown components: {', '.join(unknown)}",
                unknown_components=unknown,
            )

        skip = set(ignored_list)
        return self.ordered_list(name for name in requested if name not in skip)

    def check_consistency(self) -> list[OrderViolation]:
        """Return every declared reference that is not strictly backwards."""
        violations: list[OrderViolation] = []
        for index, component in enumerate(self._components):
            for ref in component.references:
                target = self._positions.get(ref.component)
                if target is None or target >= index:
                    violations.append(OrderViolation(component.name, ref.field, ref.component))
        return violations

    def validate(self) -> None:
        violations = self.check_consistency()
        if violations:
            for violation in violations:
                logger.error("Catalog reference out of order: %s", violation)
            raise ValidationError(
                "Catalog references must point at earlier components: "
                + ", ".join(str(v) for v in violations)
            )

    def __repr__(self) -> str:
        return f"ComponentCatalog({list(self.names)!r})"


def _refs(*pairs: tuple[str, str]) -> tuple[ReferenceField, ...]:
    return tuple(ReferenceField(field, component) for field, component in pairs)


DEFAULT_CATALOG = ComponentCatalog(
    [
        ComponentType("custom_statuses"),
        ComponentType("groups"),
        ComponentType("custom_roles"),
        ComponentType("ticket_fields"),
        ComponentType(
            "ticket_forms",
            _refs(("ticket_field_ids", "ticket_fields")),
        ),
        ComponentType(
            "brands",
            _refs(("ticket_form_ids", "ticket_forms")),
        ),
        ComponentType("dynamic_content"),
        ComponentType(
            "macros",
            _refs(("group_ids", "groups"), ("brand_id", "brands")),
        ),
        # category_id is left untranslated: trigger categories come later.
        ComponentType(
            "triggers",
            _refs(("group_ids", "groups"), ("ticket_form_id", "ticket_forms")),
        ),
        ComponentType("trigger_categories"),
        ComponentType(
            "views",
            _refs(("group_id", "groups"), ("custom_status_ids", "custom_statuses")),
        ),
        ComponentType("webhooks"),
        ComponentType("apps"),
        ComponentType(
            "skills",
            _refs(("group_ids", "groups")),
        ),
    ]
)


__all__ = [
    "ReferenceField",
    "ComponentType",
    "OrderViolation",
    "ComponentCatalog",
    "DEFAULT_CATALOG",
]
