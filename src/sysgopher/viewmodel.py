"""
View model shared by both applications.

Labels and row lists are addressed through opaque handles supplied by the
UI layer. Worker threads never touch them; they hand over plain values that
a closure posted to the marshaller applies.
"""

import logging
from dataclasses import dataclass
from typing import Any, Hashable, Iterable, Protocol, Sequence

from sysgopher.sync import RWLock
from sysgopher.uithread import Marshaller

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LabelValue:
    """Text for a label plus optional tooltip and CSS class."""

    text: str
    tooltip: str | None = None
    css_class: str | None = None


@dataclass(slots=True, frozen=True)
class Row:
    """One row of a table: its identity, the rendered cells and the model item."""

    identity: Hashable
    cells: tuple[str, ...]
    css_class: str | None = None
    tooltip: str | None = None
    item: Any = None


class LabelHandle(Protocol):
    def set_text(self, text: str) -> None: ...

    def set_tooltip(self, tooltip: str | None) -> None: ...

    def set_css_class(self, css_class: str | None) -> None: ...


class RowContainer(Protocol):
    def replace_rows(self, rows: Sequence[Row]) -> None: ...

    def selected_identity(self) -> Hashable | None: ...

    def select(self, identity: Hashable | None) -> bool: ...


class LabelMap:
    """
    Fixed set of label keys bound to UI handles.

    Keys are declared up front; each is bound once with ``add``. ``update``
    is safe from any thread and goes through the marshaller, ``apply`` is
    for code already running on the UI thread.
    """

    def __init__(self, keys: Iterable[str], marshaller: Marshaller | None = None) -> None:
        self._keys = frozenset(keys)
        self._handles: dict[str, LabelHandle] = {}
        self._lock = RWLock()
        self._marshaller = marshaller

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def add(self, key: str, handle: LabelHandle) -> None:
        """
        Bind ``handle`` to ``key``.

        Raises:
            KeyError: ``key`` was not declared.
            ValueError: ``key`` is already bound.
        """
        if key not in self._keys:
            raise KeyError(key)
        with self._lock.write():
            if key in self._handles:
                raise ValueError(f"label {key!r} is already bound")
            self._handles[key] = handle

    def handle(self, key: str) -> LabelHandle | None:
        with self._lock.read():
            return self._handles.get(key)

    def update(self, key: str, value: LabelValue) -> None:
        """Schedule ``apply`` on the UI thread."""
        if self._marshaller is None:
            raise RuntimeError("LabelMap has no marshaller to post through")
        self._marshaller.post(lambda: self.apply(key, value))

    def apply(self, key: str, value: LabelValue) -> None:
        """Set text, tooltip and class of the label bound to ``key``; unknown keys are ignored."""
        handle = self.handle(key)
        if handle is None:
            logger.debug("Ignoring update for unbound label %r", key)
            return
        handle.set_text(value.text)
        handle.set_tooltip(value.tooltip)
        handle.set_css_class(value.css_class)


class RowList:
    """
    Ordered rows plus an identity index.

    ``rebuild`` swaps every row in one step and selects the row that was
    selected before, matched by identity. Without a match nothing is selected.
    """

    def __init__(self, container: RowContainer) -> None:
        self._container = container
        self._rows: list[Row] = []
        self._index: dict[Hashable, Row] = {}

    @property
    def rows(self) -> list[Row]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, identity: object) -> bool:
        return identity in self._index

    def get(self, identity: Hashable) -> Row | None:
        return self._index.get(identity)

    def selected_identity(self) -> Hashable | None:
        identity = self._container.selected_identity()
        return identity if identity in self._index else None

    def select_identity(self, identity: Hashable) -> bool:
        if identity not in self._index:
            return False
        return self._container.select(identity)

    def rebuild(self, rows: Iterable[Row]) -> bool:
        """
        Replace all rows.

        Returns:
            True if the previous selection was found again.
        """
        previous = self.selected_identity()
        rows = list(rows)

        self._container.replace_rows(rows)
        self._rows = rows
        self._index = {row.identity: row for row in rows}

        if previous is not None and previous in self._index:
            return self._container.select(previous)
        self._container.select(None)
        return False
