"""State container driving one memory inspection view.

:class:`InspectorSession` owns a single immutable :class:`ViewState`. Every
user action produces a new state, and subscribers (the Matplotlib presenter,
tests) are called with it. Page loads are split into two halves so that the
blocking network read can run anywhere:

* ``jump``/navigation methods validate input and return a :class:`PageRequest`
  tagged with a fresh token, without touching the displayed page;
* :meth:`InspectorSession.complete` and :meth:`InspectorSession.fail` apply
  the outcome, dropping it when a newer request has been issued since.

:meth:`InspectorSession.load` ties both halves together for ``asyncio`` users.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import itertools
import logging
from dataclasses import dataclass, replace

from . import selection as sel
from .addressing import MAX_ADDRESS, PageWindow, resolve_jump, window_for
from .decoder import PAGE_SIZE, ROW_LENGTH, CellWidth, Page
from .errors import ShortRead, TransportFailure
from .remote import PageFetchPort

logger = logging.getLogger(__name__)

Listener = cabc.Callable[["ViewState"], None]


@dataclass(frozen=True)
class Notice:
    """A non-blocking message for the user."""

    level: str
    message: str


@dataclass(frozen=True)
class PageRequest:
    """One page fetch, identified by a monotonically increasing token."""

    token: int
    host: str
    base_offset: int
    offset_within_page: int
    length: int


@dataclass(frozen=True)
class ViewState:
    """Everything the presenter needs to draw one frame."""

    page: Page | None = None
    cell_width: CellWidth = CellWidth.BYTE
    selection: sel.Selection | None = None
    pending: PageRequest | None = None
    notice: Notice | None = None

    @property
    def cursor(self) -> int | None:
        """Return the absolute address of the selected cell."""
        if self.page is None or self.selection is None:
            return None
        return self.page.base_offset + self.selection.offset


class InspectorSession:
    """Paged view over a remote host's memory."""

    def __init__(
        self,
        fetcher: PageFetchPort,
        host: str,
        page_size: int = PAGE_SIZE,
        row_length: int = ROW_LENGTH,
        cell_width: CellWidth = CellWidth.BYTE,
    ) -> None:
        """Create an empty session; nothing is fetched until a jump."""
        self.fetcher = fetcher
        self.host = host
        self.page_size = page_size
        self.row_length = row_length
        self.state = ViewState(cell_width=cell_width)
        self.closed = False
        self._tokens = itertools.count(1)
        self._latest = 0
        self._listeners: list[Listener] = []

    # -------- subscription --------

    def subscribe(self, listener: Listener) -> cabc.Callable[[], None]:
        """Call ``listener`` after every state change; returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, state: ViewState) -> ViewState:
        self.state = state
        for listener in list(self._listeners):
            listener(state)
        return state

    # -------- requests --------

    def _issue(self, window: PageWindow) -> PageRequest:
        if self.closed:
            msg = "session has been closed"
            raise RuntimeError(msg)
        token = next(self._tokens)
        self._latest = token
        request = PageRequest(
            token=token,
            host=self.host,
            base_offset=window.base_offset,
            offset_within_page=window.offset_within_page,
            length=window.length,
        )
        logger.debug(
            "Request %d: page 0x%X (+0x%X)",
            token, request.base_offset, request.offset_within_page,
        )
        self._set(replace(self.state, pending=request))
        return request

    def request_address(self, address: int) -> PageRequest:
        """Issue a fetch for the page that contains ``address``."""
        return self._issue(window_for(address, self.page_size))

    def jump(self, text: str) -> PageRequest:
        """Parse jump input and issue a fetch for its page.

        Raises :class:`~devmem_viewer.errors.InvalidAddress` before any state
        changes when ``text`` is unusable.
        """
        current = self.state.cursor or 0
        return self.request_address(resolve_jump(text, current))

    def is_current(self, request: PageRequest) -> bool:
        """Return ``True`` when ``request`` is the newest one issued."""
        return not self.closed and request.token == self._latest

    def complete(self, request: PageRequest, data: bytes) -> bool:
        """Display ``data`` as the page answering ``request``.

        Stale responses and short reads are not applied; the return value
        says whether the page was replaced.
        """
        if not self.is_current(request):
            logger.debug("Discarding stale response for request %d", request.token)
            return False
        if len(data) != request.length:
            self.fail(request, ShortRead(request.length, len(data)))
            return False
        page = Page(base_offset=request.base_offset, data=bytes(data))
        self._set(
            replace(
                self.state,
                page=page,
                selection=sel.page_replaced(
                    page, self.state.cell_width, request.offset_within_page
                ),
                pending=None,
                notice=None,
            )
        )
        return True

    def fail(self, request: PageRequest, exc: Exception) -> bool:
        """Record a failed ``request`` while keeping the last good page."""
        if not self.is_current(request):
            logger.debug("Discarding stale failure for request %d: %s", request.token, exc)
            return False
        logger.warning("Failed to read page 0x%X: %s", request.base_offset, exc)
        self._set(
            replace(
                self.state,
                pending=None,
                notice=Notice("error", f"read at 0x{request.base_offset:X} failed: {exc}"),
            )
        )
        return True

    async def load(self, request: PageRequest) -> bool:
        """Fetch ``request`` on a worker thread and apply the result."""
        try:
            data = await asyncio.to_thread(
                self.fetcher.fetch, request.host, request.base_offset, request.length
            )
        except TransportFailure as exc:
            self.fail(request, exc)
            return False
        except Exception as exc:
            logger.error(
                "Unexpected error while reading 0x%X", request.base_offset, exc_info=exc,
            )
            self.fail(request, exc)
            return False
        return self.complete(request, data)

    async def goto(self, text: str) -> bool:
        """Jump to ``text`` and wait for the page to arrive."""
        return await self.load(self.jump(text))

    def close(self) -> None:
        """Invalidate every outstanding request."""
        self.closed = True
        self._latest = 0
        self._listeners.clear()

    # -------- selection --------

    def hover(self, offset: int) -> ViewState:
        """Highlight the cell under the pointer."""
        page = self.state.page
        if page is None:
            return self.state
        picked = sel.hover(self.state.selection, page, self.state.cell_width, offset)
        if picked == self.state.selection:
            return self.state
        return self._set(replace(self.state, selection=picked))

    def set_cell_width(self, width: int) -> ViewState:
        """Regroup the page into cells of ``width`` bytes."""
        new_width = CellWidth(width)
        return self._set(
            replace(
                self.state,
                cell_width=new_width,
                selection=sel.change_width(self.state.selection, self.state.page, new_width),
            )
        )

    def notify(self, message: str, level: str = "error") -> ViewState:
        """Show ``message`` without touching the page or selection."""
        return self._set(replace(self.state, notice=Notice(level, message)))

    def dismiss_notice(self) -> ViewState:
        """Hide the current notification."""
        if self.state.notice is None:
            return self.state
        return self._set(replace(self.state, notice=None))

    # -------- keyboard navigation --------

    def move(self, delta: int) -> PageRequest | None:
        """Move the cursor by ``delta`` bytes.

        Stays on the current page when possible; otherwise returns the request
        for the neighbouring page. Moves below address zero or past the
        64-bit address space are ignored.
        """
        page = self.state.page
        cursor = self.state.cursor
        if page is None or cursor is None:
            return None
        target = cursor + delta
        if target < 0 or target > MAX_ADDRESS:
            return None
        if page.base_offset <= target < page.base_offset + page.length:
            self.hover(target - page.base_offset)
            return None
        return self.request_address(target)

    def next_cell(self) -> PageRequest | None:
        """Step forward one cell."""
        return self.move(int(self.state.cell_width))

    def prev_cell(self) -> PageRequest | None:
        """Step back one cell."""
        return self.move(-int(self.state.cell_width))

    def next_line(self) -> PageRequest | None:
        """Step down one row."""
        return self.move(self.row_length)

    def prev_line(self) -> PageRequest | None:
        """Step up one row."""
        return self.move(-self.row_length)

    def next_page(self) -> PageRequest | None:
        """Move to the same offset on the next page."""
        return self.move(self.page_size)

    def prev_page(self) -> PageRequest | None:
        """Move to the same offset on the previous page."""
        return self.move(-self.page_size)
