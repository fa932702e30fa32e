"""Highlighted-cell state and the transitions that keep it on a page."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .addressing import align_down, clamp
from .decoder import Page, cell_hex, cell_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """The highlighted cell: its page offset and stored (little-endian) bytes."""

    offset: int
    value: bytes

    @property
    def hex(self) -> str:
        """Return the value most-significant byte first."""
        return cell_hex(self.value)

    @property
    def as_int(self) -> int:
        """Return the value as an unsigned little-endian integer."""
        return int.from_bytes(self.value, "little")

    @property
    def bits(self) -> str:
        """Return the value in binary, one 8-digit group per byte, MSB first."""
        return " ".join(f"{b:08b}" for b in reversed(self.value))


def _select(page: Page, cell_width: int, offset: int) -> Selection:
    aligned = align_down(offset, int(cell_width))
    return Selection(offset=aligned, value=cell_value(page, aligned, cell_width))


def initial(page: Page, cell_width: int, offset: int = 0) -> Selection:
    """Create the selection shown when ``page`` first loads."""
    return page_replaced(page, cell_width, offset)


def hover(
    selection: Selection | None, page: Page, cell_width: int, offset: int,
) -> Selection | None:
    """Move the selection to the cell at ``offset``.

    Offsets outside the page leave ``selection`` untouched.
    """
    if not 0 <= offset < page.length:
        logger.debug("Ignoring hover outside page: %d", offset)
        return selection
    return _select(page, cell_width, offset)


def change_width(
    selection: Selection | None, page: Page | None, new_width: int,
) -> Selection | None:
    """Recompute ``selection`` under ``new_width``.

    The offset is snapped down to the nearest cell boundary of the new width
    so the highlighted cell always begins where a rendered cell begins.
    """
    if selection is None or page is None:
        return selection
    return _select(page, new_width, selection.offset)


def page_replaced(page: Page, cell_width: int, offset_within_page: int) -> Selection:
    """Select the translated intra-page offset on a freshly loaded ``page``."""
    if page.length == 0:
        msg = "cannot select on an empty page"
        raise ValueError(msg)
    return _select(page, cell_width, clamp(offset_within_page, 0, page.length - 1))
