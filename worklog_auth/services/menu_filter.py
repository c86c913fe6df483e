from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from worklog_auth.domain.menu import MenuGroup, MenuLeaf, MenuNode
from worklog_auth.services.authorization_engine import AuthorizationEngine


class MenuFilter:
    def __init__(self, engine: AuthorizationEngine | None = None) -> None:
        self._engine = engine or AuthorizationEngine()

    def filter(self, tree: Iterable[MenuNode], subject_id: str | None) -> tuple[MenuNode, ...]:
        """Return a pruned copy of ``tree``; the source nodes are never mutated."""
        cache: dict[tuple[str, str], bool] = {}
        return self._filter_nodes(tuple(tree), subject_id, cache)

    def _allowed(self, node: MenuNode, subject_id: str | None, cache: dict[tuple[str, str], bool]) -> bool:
        # decisions are memoized for this call only
        cache_key = (node.key, str(node.access))
        if cache_key not in cache:
            cache[cache_key] = self._engine.can_access(subject_id, node.key, node.access)
        return cache[cache_key]

    def _filter_nodes(
        self,
        nodes: tuple[MenuNode, ...],
        subject_id: str | None,
        cache: dict[tuple[str, str], bool],
    ) -> tuple[MenuNode, ...]:
        kept: list[MenuNode] = []
        for node in nodes:
            pruned = self._filter_node(node, subject_id, cache)
            if pruned is not None:
                kept.append(pruned)
        return tuple(kept)

    def _filter_node(
        self,
        node: MenuNode,
        subject_id: str | None,
        cache: dict[tuple[str, str], bool],
    ) -> MenuNode | None:
        if not self._allowed(node, subject_id, cache):
            return None
        if isinstance(node, MenuLeaf):
            return node
        if isinstance(node, MenuGroup):
            if not node.children:
                return node
            children = self._filter_nodes(node.children, subject_id, cache)
            if not children:
                return None
            return replace(node, children=children)
        raise TypeError(f"unsupported menu node: {type(node).__name__}")
