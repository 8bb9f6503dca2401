from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Optional, Sequence

from textual import events, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.timer import Timer
from textual.widgets import Footer, Header, Static
from textual.worker import get_current_worker
from rich.text import Text

import activity_log
from md_io import TodoReadError, read_and_parse
from node_models import TodoSection, changed_items, item_completion_map, section_stats
from view_state import DisplayRow, ViewState
from watcher import FileError, FileUpdated, WatchResult, WatchSubscriptionError, debounce_from_env, watch_once


PASTEL_COLORS = [
    "#66B3EB",  # blue
    "#59CC73",  # green
    "#F29959",  # peach
    "#9973E6",  # lavender
    "#4DD9B8",  # mint
    "#EB6680",  # rose
    "#E6D14D",  # yellow
    "#BF80E6",  # orchid
]
FLASH_SECONDS = 2.0


class WatchResultReady(Message):
    """Posted from the watch thread once a watch instance has a result."""

    def __init__(self, result: WatchResult) -> None:
        super().__init__()
        self.result = result


class TodoRows(Static):
    """Visible window of the flattened checklist."""

    def show_view(self, view: ViewState, flashing: set[str]) -> None:
        lines = Text(no_wrap=True, overflow="ellipsis")
        for position, (index, row) in enumerate(view.visible_rows()):
            if position:
                lines.append("\n")
            lines.append_text(self._format_row(view, row, index == view.cursor, flashing))
        self.update(lines)

    @staticmethod
    def _format_row(view: ViewState, row: DisplayRow, selected: bool, flashing: set[str]) -> Text:
        color = PASTEL_COLORS[row.color_index % len(PASTEL_COLORS)]
        line = Text(">" if selected else " ")
        line.append("  " * row.depth)
        if row.section is not None:
            done, total = section_stats(row.section)
            arrow = "▶" if view.is_collapsed(row.key) else "▼"
            line.append(f"{arrow} ")
            line.append(row.section.heading, style=f"bold {color}")
            line.append(f" [{done}/{total}]", style="#888888")
        elif row.item is not None:
            item = row.item
            line.append("[x]" if item.completed else "[ ]", style=color)
            line.append(" ")
            title_style = "strike dim #DDDDDD" if item.completed else "#DDDDDD"
            if item.title in flashing:
                title_style = f"bold {color}"
            line.append(item.title, style=title_style)
            if item.tags:
                line.append(" ")
                line.append(" ".join(f"[{tag}]" for tag in item.tags), style=f"dim {color}")
        if selected:
            line.stylize("on #3A3A3A")
        return line


class TodoTreeApp(App[None]):
    """Live tree view of a Markdown checklist."""

    TITLE = "todo-tree"

    CSS = """
    #todo-rows {
        height: 1fr;
        width: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("up,k", "cursor_up", "Up", show=False),
        Binding("down,j", "cursor_down", "Down", show=False),
        Binding("left,h", "collapse_cursor", "Fold"),
        Binding("right,l", "expand_cursor", "Unfold"),
        Binding("z", "collapse_all", "Fold All"),
        Binding("a", "expand_all", "Expand All"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        path: str | Path,
        sections: Sequence[TodoSection],
        *,
        watch: bool = True,
        debounce: Optional[float] = None,
    ) -> None:
        super().__init__()
        self.todo_path = Path(path)
        self.title = self.todo_path.name
        self.todo_view = ViewState.initial(sections)
        self.watch_enabled = watch
        self.watch_debounce = debounce_from_env() if debounce is None else debounce
        self._completion = item_completion_map(sections)
        self._flashing: set[str] = set()
        self._flash_timer: Optional[Timer] = None
        self._rows_widget: Optional[TodoRows] = None

    def compose(self) -> ComposeResult:
        yield Header()
        rows = TodoRows(id="todo-rows")
        self._rows_widget = rows
        yield rows
        yield Footer()

    def on_mount(self) -> None:
        self.todo_view.resize(self.size.height)
        self.refresh_rows()
        self.arm_watch()

    def on_resize(self, event: events.Resize) -> None:
        self.todo_view.resize(self.size.height)
        if self._rows_widget is not None:
            self.refresh_rows()

    def require_rows(self) -> TodoRows:
        if self._rows_widget is None:
            raise RuntimeError("Row widget not initialised")
        return self._rows_widget

    def refresh_rows(self) -> None:
        self.require_rows().show_view(self.todo_view, self._flashing)
        self.show_status()

    def show_status(self, message: str | None = None) -> None:
        done, total = self.todo_view.stats()
        composed = f"{done}/{total} done"
        if self.todo_view.error is not None:
            composed = f"{composed} · error: {self.todo_view.error}"
        if message:
            composed = f"{composed} · {message}"
        self.sub_title = composed

    def arm_watch(self) -> None:
        if self.watch_enabled:
            self._run_file_watch()

    @work(thread=True, exclusive=True, group="watch")
    def _run_file_watch(self) -> None:
        worker = get_current_worker()
        result = watch_once(self.todo_path, debounce=self.watch_debounce, should_stop=lambda: worker.is_cancelled)
        if result is not None and not worker.is_cancelled:
            self.post_message(WatchResultReady(result))

    def on_watch_result_ready(self, message: WatchResultReady) -> None:
        result = message.result
        if isinstance(result, FileUpdated):
            self.apply_sections(result.sections)
        elif isinstance(result, FileError):
            self.apply_error(result.error)
            if isinstance(result.error, WatchSubscriptionError):
                # Watching stays off until a manual refresh re-arms it.
                return
        self.arm_watch()

    def apply_sections(self, sections: Sequence[TodoSection]) -> None:
        completion = item_completion_map(sections)
        changed = changed_items(self._completion, completion)
        self._completion = completion
        self.todo_view.apply_update(sections)
        if changed:
            self._flashing = set(changed)
            if self._flash_timer is not None:
                self._flash_timer.stop()
            self._flash_timer = self.set_timer(FLASH_SECONDS, self._clear_flash)
        self.refresh_rows()

    def apply_error(self, error: Exception) -> None:
        self.todo_view.apply_error(error)
        activity_log.log_event("ERROR", str(self.todo_path), str(error))
        self.bell()
        self.refresh_rows()

    def _clear_flash(self) -> None:
        self._flash_timer = None
        self._flashing = set()
        self.refresh_rows()

    def action_cursor_up(self) -> None:
        self.todo_view.move_cursor(-1)
        self.refresh_rows()

    def action_cursor_down(self) -> None:
        self.todo_view.move_cursor(1)
        self.refresh_rows()

    def action_collapse_cursor(self) -> None:
        if self.todo_view.collapse_at_cursor():
            self.refresh_rows()

    def action_expand_cursor(self) -> None:
        if self.todo_view.expand_at_cursor():
            self.refresh_rows()

    def action_collapse_all(self) -> None:
        self.todo_view.collapse_all()
        self.refresh_rows()

    def action_expand_all(self) -> None:
        self.todo_view.expand_all()
        self.refresh_rows()

    def action_refresh(self) -> None:
        try:
            sections = read_and_parse(self.todo_path)
        except TodoReadError as exc:
            self.apply_error(exc)
        else:
            self.apply_sections(sections)
            self.show_status("Reloaded")
            activity_log.log_event("REFRESH", str(self.todo_path))
        self.arm_watch()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todo-tree",
        description="Show a Markdown checklist as a live, foldable tree.",
    )
    parser.add_argument("path", help="Markdown file with ## headings and - [ ] checkboxes.")
    parser.add_argument("--no-watch", action="store_true", help="Do not reload when the file changes.")
    parser.add_argument(
        "--debounce",
        type=float,
        default=None,
        help="Seconds to wait for writes to settle (default: $TODO_TREE_DEBOUNCE or 0.1).",
    )
    parser.add_argument("--log", default=None, help="Append activity to this file (default: $TODO_TREE_LOG).")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    path = Path(args.path).expanduser().resolve()
    if not path.is_file():
        print(f"Error: {path} is not a readable file", file=sys.stderr)
        return 1
    try:
        sections = read_and_parse(path)
    except TodoReadError as exc:
        print(f"Error reading file: {exc}", file=sys.stderr)
        return 1

    activity_log.configure(args.log)
    activity_log.reset_activity_log()
    activity_log.log_event("OPEN", str(path))
    TodoTreeApp(path, sections, watch=not args.no_watch, debounce=args.debounce).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
