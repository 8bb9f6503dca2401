"""Fold state, row flattening and cursor/viewport bookkeeping.

The section tree is never shown directly. It is flattened into
``DisplayRow`` entries according to a fold state keyed by heading path, and
the cursor and scroll offset index into that flat list. Fold state is keyed
by path rather than by section object so it survives a re-parse of the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from node_models import TodoItem, TodoSection, count_stats


KEY_SEPARATOR = "/"
PALETTE_SIZE = 8
# Header and footer rows drawn around the list.
CHROME_LINES = 2

FoldState = Dict[str, bool]


def section_key(prefix: str, heading: str) -> str:
    if not prefix:
        return heading
    return f"{prefix}{KEY_SEPARATOR}{heading}"


def default_fold(sections: Sequence[TodoSection]) -> FoldState:
    """Collapse every fully completed section, at any depth."""
    fold: FoldState = {}

    def visit(section: TodoSection, prefix: str) -> None:
        key = section_key(prefix, section.heading)
        if section.all_completed:
            fold[key] = True
        for child in section.subsections:
            visit(child, key)

    for section in sections:
        visit(section, "")
    return fold


def fold_all(sections: Sequence[TodoSection]) -> FoldState:
    fold: FoldState = {}

    def visit(section: TodoSection, prefix: str) -> None:
        key = section_key(prefix, section.heading)
        fold[key] = True
        for child in section.subsections:
            visit(child, key)

    for section in sections:
        visit(section, "")
    return fold


def toggle_collapse(fold: FoldState, key: str, collapse: bool) -> FoldState:
    updated = dict(fold)
    if collapse:
        updated[key] = True
    else:
        updated.pop(key, None)
    return updated


@dataclass(frozen=True)
class DisplayRow:
    depth: int
    # Own path for heading rows, parent section path for item rows.
    key: str
    color_index: int
    section: Optional[TodoSection] = None
    item: Optional[TodoItem] = None

    @property
    def is_section(self) -> bool:
        return self.section is not None


def flatten(sections: Sequence[TodoSection], fold: FoldState) -> List[DisplayRow]:
    rows: List[DisplayRow] = []

    def visit(section: TodoSection, depth: int, prefix: str, color_index: int) -> None:
        key = section_key(prefix, section.heading)
        rows.append(DisplayRow(depth=depth, key=key, color_index=color_index, section=section))
        if fold.get(key):
            return
        for item in section.items:
            rows.append(DisplayRow(depth=depth + 1, key=key, color_index=color_index, item=item))
        for child in section.subsections:
            visit(child, depth + 1, key, color_index)

    for ordinal, section in enumerate(sections):
        visit(section, 0, "", ordinal % PALETTE_SIZE)
    return rows


@dataclass
class ViewState:
    sections: List[TodoSection] = field(default_factory=list)
    fold: FoldState = field(default_factory=dict)
    rows: List[DisplayRow] = field(default_factory=list)
    cursor: int = 0
    scroll: int = 0
    viewport_height: int = 1
    error: Optional[Exception] = None

    @classmethod
    def initial(cls, sections: Sequence[TodoSection], height: int = 0) -> "ViewState":
        """First load: fold state is seeded from completion, once."""
        state = cls(sections=list(sections), fold=default_fold(sections))
        state.rows = flatten(state.sections, state.fold)
        state.resize(height)
        return state

    def current_row(self) -> Optional[DisplayRow]:
        if 0 <= self.cursor < len(self.rows):
            return self.rows[self.cursor]
        return None

    def is_collapsed(self, key: str) -> bool:
        return bool(self.fold.get(key))

    def _reflatten(self) -> None:
        self.rows = flatten(self.sections, self.fold)

    def _clamp_cursor(self) -> None:
        self.cursor = max(min(self.cursor, len(self.rows) - 1), 0)

    def ensure_visible(self) -> None:
        if self.cursor < self.scroll:
            self.scroll = self.cursor
        if self.cursor >= self.scroll + self.viewport_height:
            self.scroll = self.cursor - self.viewport_height + 1
        if self.scroll < 0:
            self.scroll = 0

    def resize(self, height: int) -> None:
        self.viewport_height = max(height - CHROME_LINES, 1)
        self.ensure_visible()

    def move_cursor(self, delta: int) -> None:
        if not self.rows:
            return
        self.cursor = max(min(self.cursor + delta, len(self.rows) - 1), 0)
        self.ensure_visible()

    def collapse_at_cursor(self) -> bool:
        row = self.current_row()
        if row is None:
            return False
        self.fold = toggle_collapse(self.fold, row.key, True)
        self._reflatten()
        self._clamp_cursor()
        self.ensure_visible()
        return True

    def expand_at_cursor(self) -> bool:
        row = self.current_row()
        if row is None or not row.is_section:
            return False
        self.fold = toggle_collapse(self.fold, row.key, False)
        self._reflatten()
        self.ensure_visible()
        return True

    def collapse_all(self) -> None:
        root_key = None
        for index in range(min(self.cursor, len(self.rows) - 1), -1, -1):
            if self.rows[index].depth == 0:
                root_key = self.rows[index].key
                break
        self.fold = fold_all(self.sections)
        self._reflatten()
        if root_key is not None:
            self.cursor = self._row_index(root_key)
        self._clamp_cursor()
        self.ensure_visible()

    def expand_all(self) -> None:
        current = self.current_row()
        self.fold = {}
        self._reflatten()
        if current is not None and current.is_section:
            self.cursor = self._row_index(current.key)
        self._clamp_cursor()
        self.ensure_visible()

    def apply_update(self, sections: Sequence[TodoSection]) -> None:
        """Swap in a freshly parsed tree, keeping the user's fold state."""
        self.sections = list(sections)
        self.error = None
        self._reflatten()
        self._clamp_cursor()
        self.ensure_visible()

    def apply_error(self, error: Exception) -> None:
        self.error = error

    def visible_rows(self) -> List[Tuple[int, DisplayRow]]:
        end = min(self.scroll + self.viewport_height, len(self.rows))
        return [(index, self.rows[index]) for index in range(self.scroll, end)]

    def stats(self) -> Tuple[int, int]:
        return count_stats(self.sections)

    def _row_index(self, key: str) -> int:
        for index, row in enumerate(self.rows):
            if row.is_section and row.key == key:
                return index
        return self.cursor
