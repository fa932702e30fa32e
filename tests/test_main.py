# pyright: reportUnknownMemberType=false, reportUnannotatedClassAttribute=false, reportPrivateUsage=false

import pytest

import devmem_viewer.main as main
from devmem_viewer.decoder import PAGE_SIZE, CellWidth
from devmem_viewer.errors import TransportFailure
from devmem_viewer.remote import PciDevice
from devmem_viewer.selection import Selection
from devmem_viewer.session import InspectorSession, ViewState

HOST = "http://agent"


class DummyAgent:
    def __init__(self, timeout: float = 5.0, session: object = None) -> None:
        self.timeout = timeout
        self.calls: list[tuple[str, int, int]] = []

    def fetch(self, host: str, offset: int, length: int) -> bytes:
        self.calls.append((host, offset, length))
        if offset >= 0x10000:
            raise TransportFailure(f"{host}/devmem answered HTTP 404", status=404)
        return bytes(range(256))[:length]

    def list_pci_devices(self, host: str) -> list[PciDevice]:
        return [PciDevice(0, 0, 0x1F, 3, "Audio device: Intel Corporation")]

    def read_pci_config(self, host: str, device: PciDevice) -> bytes:
        assert device == PciDevice(0, 0, 0x1F, 3)
        return bytes([0x86, 0x80, 0x71, 0xA1]) + bytes(60)


class ExplodingAgent:
    def fetch(self, host: str, offset: int, length: int) -> bytes:
        raise KeyError("boom")


def test_offset_at_maps_grid_cells_to_page_offsets() -> None:
    assert main.offset_at(0.2, 0.1, CellWidth.BYTE, 16, PAGE_SIZE) == 0
    assert main.offset_at(3.4, 2.0, CellWidth.DWORD, 16, PAGE_SIZE) == 2 * 16 + 3 * 4
    assert main.offset_at(1.0, 15.0, CellWidth.QWORD, 16, PAGE_SIZE) == 248


def test_offset_at_rejects_points_outside_grid() -> None:
    assert main.offset_at(-1.0, 0.0, CellWidth.BYTE, 16, PAGE_SIZE) is None
    assert main.offset_at(4.0, 0.0, CellWidth.DWORD, 16, PAGE_SIZE) is None
    assert main.offset_at(0.0, 16.0, CellWidth.BYTE, 16, PAGE_SIZE) is None
    assert main.offset_at(0.0, 2.0, CellWidth.BYTE, 16, 20) is None


def test_format_status_shows_absolute_and_page_offset() -> None:
    session = InspectorSession(DummyAgent(), HOST)
    request = session.jump("1234")
    session.complete(request, bytes(PAGE_SIZE))

    assert main.format_status(session.state) == "Offset: 0x1234    Page Offset: 0x34"
    assert main.format_status(ViewState()) == "Offset: -"


def test_format_inspector_switches_between_hex_and_bits() -> None:
    sel = Selection(offset=0, value=b"\x34\x12")

    assert main.format_inspector(sel, "hex") == "0x1234  (4660)"
    assert main.format_inspector(sel, "bit") == "00010010 00110100"
    assert main.format_inspector(None, "hex") == ""


def test_render_ascii_panel_draws_text() -> None:
    from PIL import ImageFont

    img = main.render_ascii_panel(["Hello, memory!"], ImageFont.load_default())

    assert img.ndim == 2
    assert img.dtype == main.np.uint8
    assert img.min() < 255


def test_page_loader_applies_results_on_drain() -> None:
    session = InspectorSession(DummyAgent(), HOST)
    loader = main.PageLoader(session)

    loader.submit(session.jump("20"))
    loader.submit(None)
    loader.executor.shutdown(wait=True)

    assert session.state.page is None
    assert loader.drain() == 1
    assert session.state.page is not None
    assert session.state.selection.offset == 0x20


def test_page_loader_reports_unexpected_errors_as_failures() -> None:
    session = InspectorSession(ExplodingAgent(), HOST)
    loader = main.PageLoader(session)

    loader.submit(session.jump("0"))
    loader.executor.shutdown(wait=True)
    loader.drain()

    assert session.state.page is None
    assert "boom" in session.state.notice.message


def test_dump_page_prints_aligned_page() -> None:
    session = InspectorSession(DummyAgent(), HOST, cell_width=CellWidth.DWORD)

    lines = main.dump_page(session, "104")

    assert len(lines) == 16
    assert lines[0].startswith("00000100: 03020100 07060504")


def test_dump_page_raises_on_transport_failure() -> None:
    session = InspectorSession(DummyAgent(), HOST)

    with pytest.raises(TransportFailure, match="404"):
        main.dump_page(session, "10000")


def test_dump_page_turns_unexpected_errors_into_transport_failure() -> None:
    session = InspectorSession(ExplodingAgent(), HOST)

    with pytest.raises(TransportFailure, match="boom"):
        main.dump_page(session, "0")


def test_dump_pci_config_decodes_config_space() -> None:
    lines = main.dump_pci_config(DummyAgent(), HOST, "00:1f.3", CellWidth.WORD)

    assert len(lines) == 4
    assert lines[0].startswith("00000000: 8086 a171 ")


def test_main_lists_pci_devices(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(main, "HttpAgent", DummyAgent)

    main.main(["agent", "--port", "8000", "--list-pci"])

    out = capsys.readouterr().out
    assert out.strip() == "0000:00:1f.3  Audio device: Intel Corporation"


def test_main_dump_mode(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(main, "HttpAgent", DummyAgent)

    main.main(["agent", "--dump", "--address", "0x10", "--cell-width", "q"])

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("00000000: 0706050403020100 0f0e0d0c0b0a0908")


def test_main_rejects_invalid_address(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main, "HttpAgent", DummyAgent)

    with pytest.raises(SystemExit, match="not a hexadecimal address"):
        main.main(["agent", "--dump", "--address", "zz"])


def test_build_parser_defaults() -> None:
    args = main.build_parser().parse_args(["10.0.0.5"])

    assert args.cell_width is CellWidth.BYTE
    assert args.timeout == main.DEFAULT_TIMEOUT
    assert not (args.dump or args.list_pci or args.pci_config)
