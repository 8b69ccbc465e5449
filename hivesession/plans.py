"""Minimal logical and physical plan trees the rule chain operates on."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, Mapping, Sequence


@dataclass(frozen=True, slots=True)
class LogicalPlan:
    """Immutable logical plan node identified by ``kind``."""

    kind: str
    children: tuple[LogicalPlan, ...] = ()
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def attr(self, name: str, default: Any = None) -> Any:
        return self.attrs.get(name, default)

    def with_attrs(self, **updates: Any) -> LogicalPlan:
        return replace(self, attrs={**self.attrs, **updates})

    def with_children(self, children: tuple[LogicalPlan, ...]) -> LogicalPlan:
        return replace(self, children=tuple(children))

    def transform_up(self, rule: Callable[[LogicalPlan], LogicalPlan]) -> LogicalPlan:
        """Apply ``rule`` to every node, children first."""

        children = tuple(child.transform_up(rule) for child in self.children)
        node = self if children == self.children else self.with_children(children)
        return rule(node)

    def walk(self) -> Iterator[LogicalPlan]:
        """Yield this node and all descendants, pre-order."""

        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True, slots=True)
class PhysicalPlan:
    """Physical operator chosen for a logical node."""

    operator: str
    logical: LogicalPlan
    children: tuple[PhysicalPlan, ...] = ()
    strategy: str | None = None

    def operators(self) -> tuple[str, ...]:
        """Operator names, pre-order (testing helper)."""

        names = [self.operator]
        for child in self.children:
            names.extend(child.operators())
        return tuple(names)


@dataclass(frozen=True, slots=True)
class Rule:
    """Named logical-plan rewrite applied by the analyzer."""

    name: str
    apply: Callable[[LogicalPlan], LogicalPlan]

    def __call__(self, plan: LogicalPlan) -> LogicalPlan:
        return self.apply(plan)


@dataclass(frozen=True, slots=True)
class Strategy:
    """Named planning strategy returning candidate operator names for a node.

    An empty result means the strategy does not apply and the planner moves on.
    """

    name: str
    apply: Callable[[LogicalPlan], Sequence[str]]

    def __call__(self, plan: LogicalPlan) -> Sequence[str]:
        return self.apply(plan)


def relation(kind: str, **attrs: Any) -> LogicalPlan:
    return LogicalPlan(kind=kind, attrs=attrs)


def node(kind: str, *children: LogicalPlan, **attrs: Any) -> LogicalPlan:
    return LogicalPlan(kind=kind, children=tuple(children), attrs=attrs)


__all__ = ["LogicalPlan", "PhysicalPlan", "Rule", "Strategy", "node", "relation"]
