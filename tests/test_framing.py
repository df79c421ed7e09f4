import pytest

from serialpha.errors import FramerOverflowError
from serialpha.framing import StreamFramer

STREAM = "7.0,25\r\n7.1,25\r\n\r\n  7.2,26 \r\n8.0,"


def test_feed_whole_stream():
    framer = StreamFramer("\r\n")
    assert framer.feed(STREAM) == ["7.0,25", "7.1,25", "7.2,26"]
    assert framer.pending == "8.0,"


@pytest.mark.parametrize("cut", range(len(STREAM) + 1))
def test_any_two_way_split_gives_same_records(cut):
    framer = StreamFramer("\r\n")
    records = framer.feed(STREAM[:cut]) + framer.feed(STREAM[cut:])
    assert records == ["7.0,25", "7.1,25", "7.2,26"]


def test_char_by_char_feed_gives_same_records():
    framer = StreamFramer("\r\n")
    records = []
    for ch in STREAM:
        records.extend(framer.feed(ch))
    assert records == ["7.0,25", "7.1,25", "7.2,26"]


def test_empty_records_are_dropped():
    framer = StreamFramer("\n")
    assert framer.feed("\n\n   \n7.0\n") == ["7.0"]


def test_bytes_with_split_multibyte_character():
    framer = StreamFramer("\n")
    data = "25.0 °C\n".encode("utf-8")
    split = data.index(b"\xb0")
    assert framer.feed(data[:split]) == []
    assert framer.feed(data[split:]) == ["25.0 °C"]


def test_overflow_discards_buffer_and_keeps_completed_records():
    framer = StreamFramer("\n", max_buffer=10)
    with pytest.raises(FramerOverflowError) as info:
        framer.feed("7.0\n" + "x" * 20)
    assert info.value.records == ["7.0"]
    assert info.value.discarded == 20
    assert framer.pending == ""
    assert framer.feed("7.1\n") == ["7.1"]


def test_empty_terminator_rejected():
    with pytest.raises(ValueError):
        StreamFramer("")


def test_reset_drops_partial_record():
    framer = StreamFramer("\n")
    assert framer.feed(b"7.0,2") == []
    framer.feed("\xc3".encode("latin-1"))
    framer.reset()
    assert framer.pending == ""
    assert framer.feed(b"7.1,25\n") == ["7.1,25"]
