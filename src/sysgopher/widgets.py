"""Textual widgets that back the view model handles."""

from typing import Callable, Hashable, Sequence

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Static
from textual.widgets.data_table import CellDoesNotExist, RowDoesNotExist

from sysgopher.actions import AUTO_REFRESH_ON, Actions
from sysgopher.config import STATUS_READY
from sysgopher.context import AppContext
from sysgopher.pipeline import RefreshPipeline
from sysgopher.viewmodel import LabelMap, Row

USAGE_CLASSES = ("normal", "warning", "critical")
USAGE_STYLES = {"normal": "green", "warning": "yellow", "critical": "bold red"}


class ValueLabel(Static):
    """A label bound to one LabelMap key."""

    DEFAULT_CSS = """
    ValueLabel {
        width: 1fr;
    }
    ValueLabel.warning {
        color: $warning;
    }
    ValueLabel.critical {
        color: $error;
        text-style: bold;
    }
    """

    def __init__(self, text: str = "Loading...", **kwargs) -> None:
        super().__init__(text, markup=False, **kwargs)
        self.value = text

    def set_text(self, text: str) -> None:
        self.value = text
        self.update(text)

    def set_tooltip(self, tooltip: str | None) -> None:
        self.tooltip = tooltip

    def set_css_class(self, css_class: str | None) -> None:
        self.remove_class(*USAGE_CLASSES)
        if css_class:
            self.add_class(css_class)


class InfoCard(Container):
    """Titled grid of caption / value pairs."""

    DEFAULT_CSS = """
    InfoCard {
        height: auto;
        border: round $primary;
        padding: 0 1;
        margin-bottom: 1;
    }
    InfoCard Horizontal {
        height: 1;
    }
    InfoCard .caption {
        width: 18;
        color: $text-muted;
    }
    """

    def __init__(self, title: str, fields: Sequence[tuple[str, str]], **kwargs) -> None:
        """
        Initialize InfoCard.

        Args:
            title: Border title.
            fields: (label key, caption) pairs, in display order.
        """
        super().__init__(**kwargs)
        self.border_title = title
        self._fields = list(fields)

    def compose(self) -> ComposeResult:
        for key, caption in self._fields:
            yield Horizontal(
                Static(f"{caption}:", classes="caption", markup=False),
                ValueLabel(id=f"label-{key}"),
            )

    def bind_labels(self, labels: LabelMap) -> None:
        """Register this card's value labels with ``labels``."""
        for key, _ in self._fields:
            labels.add(key, self.query_one(f"#label-{key}", ValueLabel))


class RowTable(DataTable):
    """
    DataTable that serves as a RowList container.

    The DataTable cursor always rests on some row, so the selection is kept
    separately. Only the user sets it, by moving the cursor or clicking a
    row, and ``select`` restores or clears it after a rebuild. While nothing
    is selected the cursor row is drawn like any other row.
    """

    DEFAULT_CSS = """
    RowTable.-unselected > .datatable--cursor {
        background: $surface;
        color: $foreground;
        text-style: none;
    }
    """

    def __init__(
        self,
        columns: Sequence[tuple[str, str]],
        class_column: str | None = None,
        **kwargs,
    ) -> None:
        """
        Initialize RowTable.

        Args:
            columns: (key, heading) pairs.
            class_column: Column whose cell is coloured by the row's CSS class.
        """
        super().__init__(**kwargs)
        self._column_defs = list(columns)
        self._class_index = [key for key, _ in columns].index(class_column) if class_column else None
        self._identities: dict[str, Hashable] = {}
        self._tooltips: dict[str, str | None] = {}
        self._selected: Hashable | None = None
        self.add_class("-unselected")

    def on_mount(self) -> None:
        self.cursor_type = "row"
        for key, heading in self._column_defs:
            self.add_column(heading, key=key)

    def replace_rows(self, rows: Sequence[Row]) -> None:
        self.clear()
        self._identities = {}
        self._tooltips = {}
        self._set_selected(None)
        for row in rows:
            key = str(row.identity)
            cells: list[str | Text] = list(row.cells)
            if self._class_index is not None and row.css_class in USAGE_STYLES:
                cells[self._class_index] = Text(row.cells[self._class_index], style=USAGE_STYLES[row.css_class])
            self.add_row(*cells, key=key)
            self._identities[key] = row.identity
            self._tooltips[key] = row.tooltip

    def selected_identity(self) -> Hashable | None:
        return self._selected

    def select(self, identity: Hashable | None) -> bool:
        if identity is None:
            self._set_selected(None)
            return False
        try:
            index = self.get_row_index(str(identity))
        except RowDoesNotExist:
            self._set_selected(None)
            return False
        self.move_cursor(row=index)
        self._set_selected(identity)
        return True

    def _set_selected(self, identity: Hashable | None) -> None:
        self._selected = identity
        self.set_class(identity is None, "-unselected")

    def _select_cursor_row(self) -> None:
        if self.row_count == 0:
            return
        try:
            row_key, _ = self.coordinate_to_cell_key(self.cursor_coordinate)
        except CellDoesNotExist:
            return
        self._set_selected(self._identities.get(row_key.value))

    def action_cursor_up(self) -> None:
        # The first key press picks the row under the cursor
        if self._selected is not None:
            super().action_cursor_up()
        self._select_cursor_row()

    def action_cursor_down(self) -> None:
        if self._selected is not None:
            super().action_cursor_down()
        self._select_cursor_row()

    def action_page_up(self) -> None:
        super().action_page_up()
        self._select_cursor_row()

    def action_page_down(self) -> None:
        super().action_page_down()
        self._select_cursor_row()

    def action_scroll_top(self) -> None:
        super().action_scroll_top()
        self._select_cursor_row()

    def action_scroll_bottom(self) -> None:
        super().action_scroll_bottom()
        self._select_cursor_row()

    def action_select_cursor(self) -> None:
        super().action_select_cursor()
        self._select_cursor_row()

    def on_click(self, event: events.Click) -> None:
        # DataTable moves the cursor in its own handler, which runs after this one
        if event.style.meta.get("row", -1) >= 0:
            self.call_next(self._select_cursor_row)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self.tooltip = self._tooltips.get(event.row_key.value)


class StatusBar(Horizontal):
    """Current operation, last update time and the auto-refresh toggle."""

    DEFAULT_CSS = """
    StatusBar {
        dock: bottom;
        height: 3;
        padding: 0 1;
        background: $surface;
    }
    StatusBar #status {
        width: 1fr;
        content-align: left middle;
        height: 3;
    }
    StatusBar #last-updated {
        width: auto;
        content-align: left middle;
        height: 3;
        padding: 0 2;
    }
    """

    status_text = STATUS_READY
    last_updated_text = "Last updated: Never"

    def compose(self) -> ComposeResult:
        yield Static(STATUS_READY, id="status", markup=False)
        yield Static("Last updated: Never", id="last-updated", markup=False)
        yield Button(AUTO_REFRESH_ON, id="toggle-auto-refresh")

    def set_status(self, text: str) -> None:
        self.status_text = text
        self.query_one("#status", Static).update(text)

    def set_last_updated(self, text: str) -> None:
        self.last_updated_text = text
        self.query_one("#last-updated", Static).update(text)

    def set_toggle_label(self, text: str) -> None:
        self.query_one("#toggle-auto-refresh", Button).label = text


class ConfirmDialog(ModalScreen[bool]):
    """OK / Cancel confirmation."""

    DEFAULT_CSS = """
    ConfirmDialog {
        align: center middle;
    }
    ConfirmDialog > Container {
        width: 60;
        height: auto;
        border: thick $warning;
        background: $surface;
        padding: 1 2;
    }
    ConfirmDialog Horizontal {
        height: auto;
        align: right middle;
        margin-top: 1;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        yield Container(
            Static(self._message, id="confirm-message", markup=False),
            Horizontal(
                Button("Cancel", id="cancel"),
                Button("OK", id="ok", variant="error"),
            ),
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self.dismiss(event.button.id == "ok")

    def action_cancel(self) -> None:
        self.dismiss(False)


def screen_confirmer(push_screen: Callable) -> Callable[[str, Callable[[bool], None]], None]:
    """Adapt ``App.push_screen`` to the Actions confirmer signature."""

    def confirm(message: str, answered: Callable[[bool], None]) -> None:
        push_screen(ConfirmDialog(message), lambda ok: answered(bool(ok)))

    return confirm


class RefreshApp(App):
    """
    Shared shell of both applications.

    Owns the AppContext, drains the marshaller on a short interval timer and
    routes the status bar, toggle button and key bindings to Actions.
    Subclasses build the layout and the pipeline.
    """

    LABEL_KEYS: Sequence[str] = ()
    DRAIN_INTERVAL = 0.05

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "refresh", "Refresh"),
        Binding("a", "toggle_auto_refresh", "Auto-refresh"),
    ]

    def __init__(self, context: AppContext) -> None:
        super().__init__()
        self._app_context = context
        self._labels = LabelMap(self.LABEL_KEYS, context.marshaller)
        self._actions: Actions | None = None

    @property
    def context(self) -> AppContext:
        return self._app_context

    @property
    def labels(self) -> LabelMap:
        return self._labels

    @property
    def actions(self) -> Actions:
        if self._actions is None:
            raise RuntimeError("Application is not mounted")
        return self._actions

    def build_pipeline(self, status_bar: StatusBar) -> RefreshPipeline:
        raise NotImplementedError

    def refresh_interval(self) -> float:
        raise NotImplementedError

    def on_mount(self) -> None:
        """Wire labels, pipeline and actions, then start refreshing."""
        for card in self.query(InfoCard):
            card.bind_labels(self._labels)

        status_bar = self.query_one(StatusBar)
        pipeline = self.build_pipeline(status_bar)
        self._app_context.attach(pipeline, self.refresh_interval())
        self._actions = Actions(
            self._app_context,
            confirm=screen_confirmer(self.push_screen),
            on_status=status_bar.set_status,
            on_toggle_label=status_bar.set_toggle_label,
            on_notify=self.notify,
        )

        self._app_context.start()
        self.set_interval(self.DRAIN_INTERVAL, self._app_context.marshaller.drain)
        self._actions.refresh()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "toggle-auto-refresh":
            self.action_toggle_auto_refresh()
        elif event.button.id == "refresh":
            self.action_refresh()

    def action_refresh(self) -> None:
        self.actions.refresh()

    def action_toggle_auto_refresh(self) -> None:
        self.actions.toggle_auto_refresh()

    async def action_quit(self) -> None:
        """Stop background work before leaving."""
        self._app_context.close()
        self.exit()

    def on_unmount(self) -> None:
        self._app_context.close()
