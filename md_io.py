import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Tuple

from node_models import TodoItem, TodoSection


_MIN_HEADING_LEVEL = 2
_MAX_HEADING_LEVEL = 4
_CHECKBOX_PATTERN = re.compile(r"^- \[([ xX])\] (.*)$")
_TAG_PATTERN = re.compile(r"\[([A-Za-z0-9][A-Za-z0-9/]*)\]")
_BOLD_PATTERN = re.compile(r"\*\*(.*?)\*\*")
_DETAIL_PREFIX = "- "
_TITLE_STOPS = (" [", " - ")


class TodoReadError(OSError):
    """The checklist file could not be read."""


@dataclass
class _OpenSection:
    level: int
    heading: str
    items: List[TodoItem] = field(default_factory=list)
    subsections: List[TodoSection] = field(default_factory=list)

    def close(self) -> TodoSection:
        done = all(item.completed for item in self.items) and all(
            child.all_completed for child in self.subsections
        )
        return TodoSection(
            heading=self.heading,
            level=self.level,
            items=tuple(self.items),
            subsections=tuple(self.subsections),
            all_completed=done,
        )


def _match_heading(line: str) -> Optional[Tuple[int, str]]:
    """Return (level, text) for a structural heading, or None."""
    level = len(line) - len(line.lstrip("#"))
    if level < _MIN_HEADING_LEVEL or level > _MAX_HEADING_LEVEL:
        return None
    heading = line[level:].strip()
    if not heading:
        return None
    return level, heading


def extract_title(text: str) -> str:
    """Display title of a checkbox: bold span first, else text before ' [' or ' - '."""
    bold = _BOLD_PATTERN.search(text)
    if bold:
        return bold.group(1).strip()
    cut = len(text)
    for stop in _TITLE_STOPS:
        index = text.find(stop)
        if index != -1:
            cut = min(cut, index)
    return text[:cut].strip()


def extract_tags(text: str) -> Tuple[str, ...]:
    return tuple(match.group(1) for match in _TAG_PATTERN.finditer(text))


def _match_checkbox(line: str, line_number: int) -> Optional[TodoItem]:
    match = _CHECKBOX_PATTERN.match(line)
    if not match:
        return None
    rest = match.group(2)
    return TodoItem(
        title=extract_title(rest),
        completed=match.group(1) != " ",
        line=line_number,
        tags=extract_tags(rest),
    )


def _strip_detail_line(line: str) -> str:
    if line.startswith(_DETAIL_PREFIX):
        line = line[len(_DETAIL_PREFIX):]
    return line.strip()


def parse(md: str) -> List[TodoSection]:
    """Parse checklist Markdown into a forest of heading sections.

    Headings ``##`` through ``####`` nest by level; ``#`` titles and deeper
    headings are plain text. Checkbox lines become items of the innermost open
    section, and any other non-blank lines after an item become that item's
    details until the next checkbox or heading. Parsing never fails: anything
    unrecognised is ignored or kept as detail text.
    """
    roots: List[TodoSection] = []
    stack: List[_OpenSection] = []
    pending_details: List[str] = []

    def flush_details() -> None:
        if pending_details and stack and stack[-1].items:
            stack[-1].items[-1] = replace(stack[-1].items[-1], details=tuple(pending_details))
        pending_details.clear()

    def close_top() -> None:
        section = stack.pop().close()
        if stack:
            stack[-1].subsections.append(section)
        else:
            roots.append(section)

    for index, raw_line in enumerate(md.split("\n")):
        line = raw_line.strip()

        heading = _match_heading(line)
        if heading:
            level, text = heading
            flush_details()
            while stack and stack[-1].level >= level:
                close_top()
            stack.append(_OpenSection(level=level, heading=text))
            continue

        item = _match_checkbox(line, index + 1)
        if item:
            flush_details()
            if stack:
                stack[-1].items.append(item)
            continue

        if line and stack and stack[-1].items:
            pending_details.append(_strip_detail_line(line))

    flush_details()
    while stack:
        close_top()

    return roots


def read_and_parse(path: Path) -> List[TodoSection]:
    """Read ``path`` as UTF-8 and parse it. Only I/O can fail here."""
    try:
        markdown = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise TodoReadError(f"{path}: not valid UTF-8 ({exc.reason})") from exc
    except OSError as exc:
        raise TodoReadError(exc.errno, exc.strerror or str(exc), str(path)) from exc
    return parse(markdown)
