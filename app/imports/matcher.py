"""Duplicate detection against already-stored todos.

An external id match is authoritative. Otherwise a candidate is a
duplicate of a stored todo when the titles normalize to the same text or
share at least ``FUZZY_THRESHOLD`` of their tokens, and the due day and
category agree. Among several qualifying todos the highest Jaccard score
wins; on a tie the earliest in pool order is kept.
"""

from collections import defaultdict
from typing import Iterable

from app.imports.text import eq_day, eq_nullable, jaccard, normalize_text, tokenize
from app.models import ExistingTodo, ImportRecord

FUZZY_THRESHOLD = 0.9


class DuplicateMatcher:
    def __init__(self, pool: Iterable[ExistingTodo] = ()):
        self.pool: list[ExistingTodo] = []
        self._by_title: dict[str, list[ExistingTodo]] = defaultdict(list)
        for todo in pool:
            self.add(todo)

    def add(self, todo: ExistingTodo):
        self.pool.append(todo)
        self._by_title[normalize_text(todo.title)].append(todo)

    def _candidates(self, key: str, related_keys: bool) -> list[ExistingTodo]:
        if not related_keys:
            return list(self._by_title.get(key, ()))
        seen: set[int] = set()
        found = []
        for other_key, todos in self._by_title.items():
            if other_key == key or (key and other_key and (key in other_key or other_key in key)):
                for todo in todos:
                    if id(todo) not in seen:
                        seen.add(id(todo))
                        found.append(todo)
        # keep pool order so ties resolve the same way regardless of index layout
        order = {id(todo): i for i, todo in enumerate(self.pool)}
        return sorted(found, key=lambda todo: order[id(todo)])

    def find(
        self,
        candidate: ImportRecord,
        scope: str | None = None,
        related_keys: bool = False,
    ) -> ExistingTodo | None:
        """Return the stored todo ``candidate`` duplicates, or None.

        ``scope`` restricts matching to todos under that parent id.
        ``related_keys`` also considers titles whose normalized form contains,
        or is contained in, the candidate's.
        """

        def in_scope(todo: ExistingTodo) -> bool:
            return scope is None or (todo.parent_id or None) == scope

        if candidate.external_id:
            for todo in self.pool:
                if (
                    todo.external_id == candidate.external_id
                    and (
                        not candidate.external_source
                        or todo.external_source == candidate.external_source
                    )
                    and in_scope(todo)
                ):
                    return todo

        key = normalize_text(candidate.title)
        tokens = tokenize(candidate.title)
        best, best_score = None, 0.0
        for todo in self._candidates(key, related_keys):
            if not in_scope(todo):
                continue
            score = jaccard(tokens, tokenize(todo.title))
            exact = normalize_text(todo.title) == key
            if (
                (exact or score >= FUZZY_THRESHOLD)
                and eq_day(candidate.due_date, todo.due_date)
                and eq_nullable(candidate.category, todo.category)
                and score > best_score
            ):
                best, best_score = todo, score
        return best
