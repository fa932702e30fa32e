"""Translate user supplied hex addresses into aligned page windows."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidAddress

MAX_ADDRESS = (1 << 64) - 1

HEX_ADDRESS = re.compile(r"^(?:0[xX])?([0-9a-fA-F]+)$")


@dataclass(frozen=True)
class PageWindow:
    """Page-aligned fetch window plus the cursor position inside it."""

    base_offset: int
    offset_within_page: int
    length: int

    @property
    def address(self) -> int:
        """Return the absolute address the window was computed from."""
        return self.base_offset + self.offset_within_page


def parse_address(text: str) -> int:
    """Parse ``text`` as a hexadecimal address.

    The ``0x`` prefix is optional. Anything that is not a non-empty run of hex
    digits, or that does not fit in 64 bits, raises :class:`InvalidAddress`.
    """
    match = HEX_ADDRESS.match(text.strip())
    if match is None:
        raise InvalidAddress(text)
    value = int(match.group(1), 16)
    if value > MAX_ADDRESS:
        raise InvalidAddress(text, "exceeds the 64-bit address space")
    return value


def clamp(v: int, lo: int, hi: int) -> int:
    """Clamp ``v`` to the inclusive ``[lo, hi]`` range."""
    return lo if v < lo else hi if v > hi else v


def align_down(value: int, width: int) -> int:
    """Round ``value`` down to a multiple of ``width``."""
    if width <= 0:
        msg = "alignment width must be positive"
        raise ValueError(msg)
    return value - value % width


def window_for(address: int, page_size: int) -> PageWindow:
    """Return the page window that contains ``address``."""
    if page_size <= 0:
        msg = "page size must be positive"
        raise ValueError(msg)
    remainder = address % page_size
    return PageWindow(
        base_offset=address - remainder,
        offset_within_page=remainder,
        length=page_size,
    )


def translate(address_text: str, page_size: int) -> PageWindow:
    """Map hex ``address_text`` to the page that has to be fetched for it."""
    return window_for(parse_address(address_text), page_size)


def resolve_jump(text: str, current: int) -> int:
    """Resolve jump input relative to the ``current`` cursor address.

    ``+10`` moves forward and ``-10`` moves backward by the given hex amount;
    any other input is an absolute address.
    """
    stripped = text.strip()
    if stripped[:1] == "+":
        target = current + parse_address(stripped[1:])
    elif stripped[:1] == "-":
        delta = parse_address(stripped[1:])
        if delta > current:
            raise InvalidAddress(text, "jumps below address zero")
        target = current - delta
    else:
        return parse_address(stripped)
    if target > MAX_ADDRESS:
        raise InvalidAddress(text, "exceeds the 64-bit address space")
    return target
