import pytest

import devmem_viewer.decoder as decoder


def make_page(base: int = 0, length: int = decoder.PAGE_SIZE) -> decoder.Page:
    return decoder.Page(base_offset=base, data=bytes((i + 1) & 0xFF for i in range(length)))


def test_dword_cells_read_little_endian_storage_msb_first() -> None:
    cells = decoder.decode(make_page(), decoder.CellWidth.DWORD)

    assert cells[0] == decoder.DecodedCell(start_offset=0, hex="04030201")
    assert cells[1].start_offset == 4
    assert len(cells) == decoder.PAGE_SIZE // 4


def test_byte_cells_are_two_lowercase_digits() -> None:
    page = decoder.Page(base_offset=0, data=bytes([0xAB, 0x0C]))

    assert [c.hex for c in decoder.decode(page, 1)] == ["ab", "0c"]


def test_decode_is_row_major_and_deterministic() -> None:
    page = make_page()

    first = decoder.decode(page, decoder.CellWidth.WORD)
    second = decoder.decode(page, decoder.CellWidth.WORD)

    assert first == second
    assert [c.start_offset for c in first] == list(range(0, decoder.PAGE_SIZE, 2))


@pytest.mark.parametrize("width", list(decoder.CellWidth))
def test_reversing_each_cell_restores_page_bytes(width: decoder.CellWidth) -> None:
    page = make_page(base=0x1000)

    cells = decoder.decode(page, width)
    rebuilt = b"".join(bytes.fromhex(c.hex)[::-1] for c in cells)

    assert rebuilt == page.data


def test_changing_width_leaves_page_bytes_alone() -> None:
    page = make_page()
    before = page.data

    decoder.decode(page, decoder.CellWidth.QWORD)
    decoder.decode(page, decoder.CellWidth.BYTE)

    assert page.data == before
    assert page.array.tolist() == list(before)


def test_short_final_row_is_not_padded() -> None:
    page = make_page(length=20)

    cells = decoder.decode(page, decoder.CellWidth.QWORD)

    assert [c.start_offset for c in cells] == [0, 8, 16]
    assert cells[-1].hex == "14131211"


def test_decode_rejects_zero_width() -> None:
    with pytest.raises(ValueError):
        decoder.decode(make_page(), 0)


def test_cell_value_returns_stored_bytes() -> None:
    page = make_page()

    assert decoder.cell_value(page, 4, 4) == bytes([5, 6, 7, 8])
    with pytest.raises(IndexError):
        decoder.cell_value(page, decoder.PAGE_SIZE, 1)


def test_cell_width_parse_accepts_names_and_sizes() -> None:
    assert decoder.CellWidth.parse("b") is decoder.CellWidth.BYTE
    assert decoder.CellWidth.parse("Word") is decoder.CellWidth.WORD
    assert decoder.CellWidth.parse("4") is decoder.CellWidth.DWORD
    assert decoder.CellWidth.parse("q") is decoder.CellWidth.QWORD
    assert decoder.CellWidth.QWORD.label == "Qword(64)"
    with pytest.raises(ValueError):
        decoder.CellWidth.parse("3")


def test_ascii_lines_replace_unprintable_bytes() -> None:
    page = decoder.Page(base_offset=0, data=b"Hi!\x00\x7f\x80" + b"A" * 10 + b"z")

    assert decoder.ascii_lines(page) == ["Hi!...AAAAAAAAAA", "z"]


def test_format_hexdump_prefixes_absolute_addresses() -> None:
    page = decoder.Page(base_offset=0x2000, data=bytes(range(32)))

    lines = decoder.format_hexdump(page, decoder.CellWidth.WORD)

    assert len(lines) == 2
    assert lines[0].startswith("00002000: 0100 0302 ")
    assert lines[1].startswith("00002010: 1110 1312 ")
    assert lines[0].endswith("  " + "." * 16)
