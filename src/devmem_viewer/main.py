#!/usr/bin/env python3
"""Interactive hex viewer for a remote host's physical memory."""

# mypy: ignore-errors

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import logging
import queue
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

from .decoder import (
    PAGE_ROWS,
    ROW_LENGTH,
    CellWidth,
    Page,
    ascii_lines,
    decode,
    format_hexdump,
)
from .errors import InspectorError, InvalidAddress, TransportFailure
from .remote import DEFAULT_TIMEOUT, HttpAgent, PciDevice, build_host_address
from .selection import Selection
from .session import InspectorSession, PageRequest, ViewState

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
    from matplotlib.backend_bases import Event, KeyEvent, MouseEvent
    from PIL import ImageFont

    FreeTypeFont = ImageFont.FreeTypeFont
else:
    NDArray: TypeAlias = Any
    FreeTypeFont: TypeAlias = Any

REFRESH_MS = 50
INSPECT_MODES = ("hex", "bit")

KEY_ACTIONS = {
    "left": "prev_cell",
    "right": "next_cell",
    "up": "prev_line",
    "down": "next_line",
    "pageup": "prev_page",
    "pagedown": "next_page",
}
WIDTH_KEYS = {
    "B": CellWidth.BYTE,
    "W": CellWidth.WORD,
    "D": CellWidth.DWORD,
    "Q": CellWidth.QWORD,
}


@dataclass(frozen=True)
class ViewerConfig:
    """Settings collected from the command line."""

    host: str
    address: str = "0"
    cell_width: CellWidth = CellWidth.BYTE
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "WARNING"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Browse /dev/mem and PCI configuration space of a remote host",
    )
    p.add_argument("host", help="agent host name or address, e.g. 10.0.0.5")
    p.add_argument("--port", type=int, default=None, help="agent TCP port")
    p.add_argument("--scheme", default="http", choices=("http", "https"))
    p.add_argument("--address", default="0", help="initial address in hex")
    p.add_argument(
        "--cell-width",
        type=CellWidth.parse,
        default=CellWidth.BYTE,
        help="b, w, d or q",
    )
    p.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="seconds")
    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--dump", action="store_true", help="print one page and exit")
    mode.add_argument("--list-pci", action="store_true", help="list PCI devices")
    mode.add_argument(
        "--pci-config",
        metavar="BDF",
        help="print the configuration space of [domain:]bus:dev.fn",
    )
    return p


def format_status(state: ViewState) -> str:
    """Return the offset line shown under the grid."""
    if state.cursor is None or state.selection is None:
        return "Offset: -"
    return (
        f"Offset: 0x{state.cursor:x}    Page Offset: 0x{state.selection.offset:02x}"
    )


def format_inspector(selection: Selection | None, mode: str) -> str:
    """Render the selected value as hex or as bits."""
    if selection is None:
        return ""
    if mode == "bit":
        return selection.bits
    return f"0x{selection.hex}  ({selection.as_int})"


def offset_at(
    x: float, y: float, cell_width: int, row_length: int, page_length: int,
) -> int | None:
    """Map grid coordinates to the page offset of the cell drawn there."""
    width = int(cell_width)
    col = round(x)
    row = round(y)
    per_row = -(-row_length // width)
    if col < 0 or col >= per_row or row < 0:
        return None
    offset = row * row_length + col * width
    if offset >= page_length:
        return None
    return offset


def pick_mono_font(size: int = 13) -> FreeTypeFont:
    """Return a readable monospace font, falling back to Pillow's default."""
    try:
        from matplotlib import font_manager as fm
        from PIL import ImageFont
    except ModuleNotFoundError as exc:  # pragma: no cover
        msg = "Font rendering requires both Pillow and Matplotlib"
        raise RuntimeError(msg) from exc

    path = fm.findfont("DejaVu Sans Mono", fallback_to_default=True)
    try:
        return ImageFont.truetype(path, size=size)
    except OSError:  # pragma: no cover - Pillow fallback path
        return ImageFont.load_default()


def render_ascii_panel(
    lines: list[str], font: FreeTypeFont, columns: int = ROW_LENGTH,
    rows: int = PAGE_ROWS,
) -> NDArray:
    """Render the ASCII column of the page into a greyscale image."""
    try:
        from PIL import Image, ImageDraw
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise RuntimeError("Rendering text panels requires Pillow") from exc

    try:
        left, _top, right, _bottom = font.getbbox("M")
        cell_w = max(8, right - left)
        ascent, descent = font.getmetrics()
        cell_h = max(12, ascent + descent)
    except AttributeError:
        cell_w, cell_h = 8, 12
    img = Image.new("L", (columns * cell_w, rows * cell_h), color=255)
    draw = ImageDraw.Draw(img)
    for y, text in enumerate(lines[:rows]):
        draw.text((0, y * cell_h), text, fill=0, font=font)
    return np.asarray(img, dtype=np.uint8)


# -------- page loading --------


class PageLoader:
    """Runs blocking fetches on worker threads for the GUI thread."""

    def __init__(self, session: InspectorSession, workers: int = 2) -> None:
        """Results wait in a queue until :meth:`drain` applies them."""
        self.session = session
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="devmem-fetch",
        )
        self.results: queue.SimpleQueue[
            tuple[PageRequest, bytes | None, BaseException | None]
        ] = queue.SimpleQueue()

    def submit(self, request: PageRequest | None) -> None:
        if request is None:
            return
        fetcher = self.session.fetcher
        future = self.executor.submit(
            fetcher.fetch, request.host, request.base_offset, request.length
        )

        def done(fut: concurrent.futures.Future[bytes]) -> None:
            if fut.cancelled():
                return
            exc = fut.exception()
            self.results.put((request, None if exc else fut.result(), exc))

        future.add_done_callback(done)

    def drain(self) -> int:
        """Apply finished fetches on the calling thread; returns how many."""
        handled = 0
        while True:
            try:
                request, data, exc = self.results.get_nowait()
            except queue.Empty:
                return handled
            handled += 1
            if exc is None:
                self.session.complete(request, data or b"")
                continue
            if not isinstance(exc, TransportFailure):
                logger.error(
                    "Unexpected error while reading 0x%X",
                    request.base_offset,
                    exc_info=exc,
                )
            self.session.fail(request, exc)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)


# -------- Matplotlib grid --------


class GridPresenter:
    """Draws the session state and routes pointer and key events into it."""

    def __init__(self, session: InspectorSession, loader: PageLoader) -> None:
        """Build the figure; nothing is shown until :meth:`show`."""
        try:
            import matplotlib.pyplot as plt
            from matplotlib import patches
            from matplotlib.widgets import RadioButtons, TextBox
        except ModuleNotFoundError as exc:  # pragma: no cover - viewer path only
            raise RuntimeError("Matplotlib is required to run the viewer") from exc

        self.plt = plt
        self.session = session
        self.loader = loader
        self.inspect_mode = INSPECT_MODES[0]
        self._layout_key: tuple[Page | None, int] | None = None
        self._texts: dict[int, Any] = {}
        self._row_labels: list[Any] = []
        self.font = pick_mono_font(13)

        _release_keymaps(plt)
        self.fig = plt.figure(figsize=(14, 7))
        gs = self.fig.add_gridspec(
            nrows=3, ncols=2, width_ratios=[3, 1], height_ratios=[12, 1, 1],
        )
        self.ax = self.fig.add_subplot(gs[0, 0])
        self.ax_ascii = self.fig.add_subplot(gs[0, 1])
        self.ax_box = self.fig.add_subplot(gs[1, 0])
        self.ax_radio = self.fig.add_subplot(gs[1:, 1])
        self.ax.set_axis_off()
        self.ax_ascii.set_axis_off()
        self.ax_ascii.set_title("ASCII")

        self.highlight = patches.Rectangle(
            (-0.5, -0.5), 1, 1, facecolor="green", edgecolor="none", visible=False,
        )
        self.ax.add_patch(self.highlight)
        self.im_ascii = self.ax_ascii.imshow(
            render_ascii_panel([], self.font),
            cmap="gray", vmin=0, vmax=255, interpolation="nearest", origin="upper",
        )

        self.box = TextBox(self.ax_box, "Address(Hex) ", initial="")
        self.box.on_submit(self.on_submit)
        labels = [width.label for width in CellWidth]
        self.radio = RadioButtons(
            self.ax_radio, labels, active=labels.index(session.state.cell_width.label),
        )
        self.radio.on_clicked(self.on_width)

        self.status_text = self.fig.text(0.02, 0.06, "", family="monospace")
        self.inspect_text = self.fig.text(0.02, 0.03, "", family="monospace")
        self.notice_text = self.fig.text(0.02, 0.005, "", color="red", fontsize=9)

        self.fig.canvas.mpl_connect("key_press_event", self.on_key)
        self.fig.canvas.mpl_connect("motion_notify_event", self.on_move)
        self.fig.canvas.mpl_connect("button_press_event", self.on_click)
        self.fig.canvas.mpl_connect("close_event", self.on_close)
        self.unsubscribe = session.subscribe(self.render)
        self.render(session.state)

    def _relayout(self, state: ViewState) -> None:
        page = state.page
        width = int(state.cell_width)
        key = (page, width)
        if key == self._layout_key:
            return
        self._layout_key = key
        for artist in [*self._texts.values(), *self._row_labels]:
            artist.remove()
        self._texts.clear()
        self._row_labels.clear()

        per_row = -(-self.session.row_length // width)
        self.ax.set_xlim(-1.5, per_row - 0.5)
        self.ax.set_ylim(PAGE_ROWS - 0.5, -0.5)
        if page is None:
            self.im_ascii.set_data(render_ascii_panel([], self.font))
            return

        row_length = self.session.row_length
        for cell in decode(page, width, row_length):
            row, col = divmod(cell.start_offset, row_length)
            self._texts[cell.start_offset] = self.ax.text(
                col // width, row, cell.hex,
                ha="center", va="center", family="monospace", fontsize=9,
            )
        for row in range(-(-page.length // row_length)):
            self._row_labels.append(
                self.ax.text(
                    -1.0, row, f"{page.base_offset + row * row_length:x}",
                    ha="right", va="center", family="monospace", fontsize=9,
                    color="0.4",
                )
            )
        self.im_ascii.set_data(render_ascii_panel(ascii_lines(page, row_length), self.font))

    def render(self, state: ViewState) -> None:
        """Redraw whatever changed in ``state``."""
        self._relayout(state)
        for offset, text in self._texts.items():
            selected = state.selection is not None and offset == state.selection.offset
            text.set_color("white" if selected else "black")

        cell = self._texts.get(state.selection.offset) if state.selection else None
        if cell is None:
            self.highlight.set_visible(False)
        else:
            x, y = cell.get_position()
            self.highlight.set_xy((x - 0.5, y - 0.5))
            self.highlight.set_visible(True)

        status = format_status(state)
        if state.pending is not None:
            status += f"    loading 0x{state.pending.base_offset:x}..."
        self.status_text.set_text(status)
        self.inspect_text.set_text(
            f"[{self.inspect_mode.upper()}] "
            + format_inspector(state.selection, self.inspect_mode)
        )
        self.notice_text.set_text(state.notice.message if state.notice else "")
        self.fig.canvas.draw_idle()

    # -------- event routing --------

    def _offset_for(self, event: MouseEvent) -> int | None:
        page = self.session.state.page
        if event.inaxes != self.ax or event.xdata is None or page is None:
            return None
        return offset_at(
            event.xdata, event.ydata, self.session.state.cell_width,
            self.session.row_length, page.length,
        )

    def on_move(self, event: MouseEvent) -> None:
        offset = self._offset_for(event)
        if offset is not None:
            self.session.hover(offset)

    def on_click(self, event: MouseEvent) -> None:
        offset = self._offset_for(event)
        if offset is None or not event.dblclick:
            return
        self.session.hover(offset)
        idx = INSPECT_MODES.index(self.inspect_mode)
        self.inspect_mode = INSPECT_MODES[(idx + 1) % len(INSPECT_MODES)]
        self.render(self.session.state)

    def on_submit(self, text: str) -> None:
        if not text.strip():
            return
        try:
            self.loader.submit(self.session.jump(text))
        except InvalidAddress as exc:
            logger.info("Rejected jump input: %s", exc)
            self.session.notify(f"invalid address {exc}")

    def on_width(self, label: str) -> None:
        for width in CellWidth:
            if width.label == label:
                self.session.set_cell_width(width)
                return

    def on_key(self, event: KeyEvent) -> None:
        if self.box.capturekeystrokes:
            return
        if event.key in WIDTH_KEYS:
            width = WIDTH_KEYS[event.key]
            self.radio.set_active(list(CellWidth).index(width))
        elif event.key in KEY_ACTIONS:
            self.loader.submit(getattr(self.session, KEY_ACTIONS[event.key])())
        elif event.key == "escape":
            self.session.dismiss_notice()

    def on_close(self, _: Event) -> None:
        self.unsubscribe()
        self.loader.shutdown()
        self.session.close()

    def tick(self, _: Event) -> tuple[object, ...]:
        self.loader.drain()
        return ()

    def show(self) -> None:
        """Run the Matplotlib event loop until the window closes."""
        from matplotlib.animation import FuncAnimation

        anim = FuncAnimation(
            self.fig, self.tick, interval=REFRESH_MS, blit=False, cache_frame_data=False,
        )
        self.plt.show()
        _ = anim


def _release_keymaps(plt: Any) -> None:
    """Drop Matplotlib's default bindings for the keys the viewer uses."""
    taken = set(KEY_ACTIONS) | set(WIDTH_KEYS)
    for name, keys in plt.rcParams.items():
        if name.startswith("keymap.") and isinstance(keys, list):
            plt.rcParams[name] = [k for k in keys if k not in taken]


# -------- command line --------


def dump_page(session: InspectorSession, address: str) -> list[str]:
    """Fetch the page holding ``address`` and return it as hexdump lines."""
    if not asyncio.run(session.goto(address)):
        notice = session.state.notice
        msg = notice.message if notice else f"no page loaded for {address}"
        raise TransportFailure(msg)
    page = session.state.page
    if page is None:
        msg = f"no page loaded for {address}"
        raise TransportFailure(msg)
    return format_hexdump(page, session.state.cell_width, session.row_length)


def dump_pci_config(agent: HttpAgent, host: str, bdf: str, cell_width: int) -> list[str]:
    """Return the configuration space of PCI function ``bdf`` as hexdump lines."""
    device = PciDevice.parse(bdf)
    page = Page(base_offset=0, data=agent.read_pci_config(host, device))
    return format_hexdump(page, cell_width)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and run the requested mode."""
    args = build_parser().parse_args(argv)
    config = ViewerConfig(
        host=build_host_address(args.host, args.port, args.scheme),
        address=args.address,
        cell_width=args.cell_width,
        timeout=args.timeout,
        log_level=args.log_level,
    )
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    agent = HttpAgent(timeout=config.timeout)
    session = InspectorSession(agent, config.host, cell_width=config.cell_width)
    try:
        if args.list_pci:
            for device in agent.list_pci_devices(config.host):
                print(f"{device.bdf}  {device.description}")
        elif args.pci_config:
            lines = dump_pci_config(agent, config.host, args.pci_config, config.cell_width)
            print("\n".join(lines))
        elif args.dump:
            print("\n".join(dump_page(session, config.address)))
        else:
            run_viewer(session, config.address)
    except (InspectorError, ValueError) as exc:
        raise SystemExit(f"error: {exc}") from exc


def run_viewer(session: InspectorSession, address: str) -> None:
    """Open the interactive window positioned at ``address``."""
    loader = PageLoader(session)
    presenter = GridPresenter(session, loader)
    loader.submit(session.jump(address))
    logger.info("Viewing %s from 0x%s", session.host, address)
    presenter.show()


if __name__ == "__main__":
    main()
