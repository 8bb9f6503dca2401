from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple


@dataclass(frozen=True)
class TodoItem:
    title: str
    completed: bool
    # 1-based line number in the source document.
    line: int
    tags: Tuple[str, ...] = ()
    details: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TodoSection:
    heading: str
    level: int
    items: Tuple[TodoItem, ...] = ()
    subsections: Tuple["TodoSection", ...] = field(default_factory=tuple)
    # True when every item at any depth is completed (vacuously true when empty).
    all_completed: bool = True


def iter_items(section: TodoSection) -> Iterator[TodoItem]:
    """Yield every item of ``section`` and its descendants, pre-order."""
    yield from section.items
    for child in section.subsections:
        yield from iter_items(child)


def section_stats(section: TodoSection) -> Tuple[int, int]:
    done = 0
    total = 0
    for item in iter_items(section):
        total += 1
        if item.completed:
            done += 1
    return done, total


def count_stats(sections: Sequence[TodoSection]) -> Tuple[int, int]:
    done = 0
    total = 0
    for section in sections:
        section_done, section_total = section_stats(section)
        done += section_done
        total += section_total
    return done, total


def item_completion_map(sections: Sequence[TodoSection]) -> Dict[str, bool]:
    """Map item titles to their completion flag across the whole forest."""
    completion: Dict[str, bool] = {}
    for section in sections:
        for item in iter_items(section):
            completion[item.title] = item.completed
    return completion


def changed_items(previous: Dict[str, bool], current: Dict[str, bool]) -> List[str]:
    """Return titles whose completion flipped, or that appeared since ``previous``.

    New titles only count once a previous snapshot exists, so the first load
    never reports everything as changed.
    """
    changed: List[str] = []
    for title, completed in current.items():
        if title in previous:
            if previous[title] != completed:
                changed.append(title)
        elif previous:
            changed.append(title)
    return changed
