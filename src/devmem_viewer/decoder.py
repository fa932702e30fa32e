"""Decode raw page bytes into fixed-width hex cells."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
else:
    NDArray: TypeAlias = Any

ROW_LENGTH = 16  # bytes per grid row
PAGE_ROWS = 16
PAGE_SIZE = ROW_LENGTH * PAGE_ROWS


class CellWidth(enum.IntEnum):
    """Number of bytes grouped into one displayed cell."""

    BYTE = 1
    WORD = 2
    DWORD = 4
    QWORD = 8

    @property
    def label(self) -> str:
        """Return the button label used by the viewer."""
        return f"{self.name.capitalize()}({self.value * 8})"

    @classmethod
    def parse(cls, text: str) -> CellWidth:
        """Accept ``b``/``w``/``d``/``q``, the full names, or the byte count."""
        key = text.strip().lower()
        if key.isdigit():
            try:
                return cls(int(key))
            except ValueError:
                pass
        for member in cls:
            if key in (member.name.lower(), member.name[0].lower()):
                return member
        msg = f"unknown cell width: {text!r}"
        raise ValueError(msg)


@dataclass(frozen=True)
class Page:
    """An address-aligned window of bytes fetched in one request."""

    base_offset: int
    data: bytes

    @property
    def length(self) -> int:
        """Return the number of bytes held by the page."""
        return len(self.data)

    @property
    def array(self) -> NDArray:
        """Return a read-only ``uint8`` view of the page bytes."""
        return np.frombuffer(self.data, dtype=np.uint8)


@dataclass(frozen=True)
class DecodedCell:
    """One rendered cell and the page offset of its first byte."""

    start_offset: int
    hex: str


def cell_hex(stored: bytes) -> str:
    """Render little-endian ``stored`` bytes most-significant byte first."""
    return stored[::-1].hex()


def decode(
    page: Page, cell_width: int, row_length: int = ROW_LENGTH,
) -> tuple[DecodedCell, ...]:
    """Group ``page`` into rows of ``row_length`` and cells of ``cell_width``.

    Cells are ordered row-major, left to right. A short final row is rendered
    short and a trailing partial cell only shows the bytes that exist.
    """
    width = int(cell_width)
    if width <= 0 or row_length <= 0:
        msg = "cell width and row length must be positive"
        raise ValueError(msg)

    arr = page.array
    cells: list[DecodedCell] = []
    for row_start in range(0, page.length, row_length):
        row = arr[row_start : row_start + row_length]
        for col in range(0, len(row), width):
            chunk = row[col : col + width].tobytes()
            cells.append(DecodedCell(start_offset=row_start + col, hex=cell_hex(chunk)))
    return tuple(cells)


def cell_value(page: Page, offset: int, cell_width: int) -> bytes:
    """Return the stored bytes of the cell that starts at ``offset``."""
    if not 0 <= offset < page.length:
        msg = f"offset {offset} outside page of {page.length} bytes"
        raise IndexError(msg)
    return page.data[offset : offset + int(cell_width)]


def _printable(value: int) -> str:
    return chr(value) if 0x20 <= value <= 0x7E else "."


def ascii_lines(page: Page, row_length: int = ROW_LENGTH) -> list[str]:
    """Render each row of ``page`` as printable ASCII, ``.`` for the rest."""
    arr = page.array
    return [
        "".join(_printable(int(v)) for v in arr[start : start + row_length])
        for start in range(0, page.length, row_length)
    ]


def format_hexdump(
    page: Page, cell_width: int, row_length: int = ROW_LENGTH,
) -> list[str]:
    """Return a plain-text dump of ``page`` with absolute addresses."""
    width = int(cell_width)
    cells = decode(page, width, row_length)
    text_rows = ascii_lines(page, row_length)
    per_row = max(1, -(-row_length // width))
    pad = per_row * (width * 2 + 1) - 1
    addr_digits = max(8, len(f"{page.base_offset + page.length:x}"))

    lines: list[str] = []
    for idx, text in enumerate(text_rows):
        row_cells = cells[idx * per_row : (idx + 1) * per_row]
        body = " ".join(cell.hex for cell in row_cells)
        addr = page.base_offset + idx * row_length
        lines.append(f"{addr:0{addr_digits}x}: {body:<{pad}}  {text}")
    return lines
