"""Display model: named regions holding per-instance content nodes.

A ``ContentNode`` is the wrapper an instance owns exclusively. Content
produced by the module's hook is attached into it and later detached by
the scheduler. Suspending an instance only flips ``hidden``; the node and
its content stay in place.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List


class ContentNode:
    __slots__ = (
        "identifier",
        "module",
        "header",
        "classes",
        "content",
        "attached",
        "hidden",
        "opacity",
        "transition",
        "region",
    )

    def __init__(
        self,
        identifier: str,
        module: str,
        header: str | None = None,
        classes: Iterable[str] = (),
    ) -> None:
        self.identifier = identifier
        self.module = module
        self.header = header
        self.classes = ("module", module, *classes)
        self.content: Any = None
        self.attached = False
        self.hidden = False
        self.opacity = 1.0
        self.transition: str | None = None
        self.region: Region | None = None

    def attach(self, content: Any) -> None:
        if self.attached:
            raise RuntimeError(
                f"{self.identifier}: content already attached"
            )
        self.content = content
        self.attached = True
        self.opacity = 1.0

    def detach(self) -> Any:
        previous = self.content
        self.content = None
        self.attached = False
        return previous

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"ContentNode({self.identifier!r}, attached={self.attached}, "
            f"hidden={self.hidden})"
        )


class Region:
    """One display position; nodes kept in placement order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._nodes: List[ContentNode] = []

    def append(self, node: ContentNode) -> None:
        if node.region is not None:
            raise RuntimeError(
                f"{node.identifier} already placed in '{node.region.name}'"
            )
        node.region = self
        self._nodes.append(node)

    def remove(self, node: ContentNode) -> None:
        if node in self._nodes:
            self._nodes.remove(node)
        node.region = None

    def visible(self) -> List[ContentNode]:
        return [n for n in self._nodes if not n.hidden]

    def __iter__(self) -> Iterator[ContentNode]:
        return iter(list(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)


class Display:
    def __init__(self, positions: Iterable[str]) -> None:
        self.regions: Dict[str, Region] = {p: Region(p) for p in positions}

    def region(self, name: str) -> Region:
        try:
            return self.regions[name]
        except KeyError:
            raise ValueError(f"Unknown display position '{name}'") from None

    def snapshot(self) -> Dict[str, list]:
        return {
            name: [
                {
                    "id": n.identifier,
                    "content": n.content,
                    "hidden": n.hidden,
                }
                for n in region
            ]
            for name, region in self.regions.items()
            if len(region)
        }
