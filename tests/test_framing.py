"""Tests for line framing of the JSON serial protocol."""

from arduino_config_mcp.protocol.framing import (
    LineFramer,
    decode_frame,
    encode_frame,
    split_frames,
)


def test_single_complete_line():
    framer = LineFramer()
    assert list(framer.feed(b'{"response":"PONG","success":true}\n')) == [
        '{"response":"PONG","success":true}'
    ]
    assert framer.pending == 0


def test_partial_line_is_held_until_completed():
    framer = LineFramer()
    assert list(framer.feed(b'{"response":"PO')) == []
    assert framer.pending == 15
    assert list(framer.feed(b'NG"}\n')) == ['{"response":"PONG"}']


def test_feed_buffers_even_if_not_iterated():
    """Bytes must not be lost when the returned iterator is ignored."""
    framer = LineFramer()
    framer.feed(b"abc")
    assert list(framer.feed(b"def\n")) == ["abcdef"]


def test_chunking_does_not_change_frames():
    """Splitting the stream at any byte boundary yields the same frames."""
    stream = b'{"a":1}\n{"b":2}\r\n\n  {"c":3}  \n'
    expected = ['{"a":1}', '{"b":2}', '{"c":3}']

    for cut in range(len(stream) + 1):
        framer = LineFramer()
        frames = list(framer.feed(stream[:cut])) + list(framer.feed(stream[cut:]))
        assert frames == expected, f"cut at {cut}"

    framer = LineFramer()
    frames = []
    for i in range(len(stream)):
        frames.extend(framer.feed(stream[i:i + 1]))
    assert frames == expected


def test_crlf_and_whitespace_are_stripped():
    assert split_frames(b'  {"x":1}\r\n') == ['{"x":1}']


def test_blank_lines_are_dropped():
    assert split_frames(b"\n\r\n   \n") == []


def test_multibyte_character_split_across_chunks():
    data = '{"name":"Lautstärke"}\n'.encode("utf-8")
    cut = data.index("ä".encode("utf-8")) + 1
    framer = LineFramer()
    assert list(framer.feed(data[:cut])) == []
    assert list(framer.feed(data[cut:])) == ['{"name":"Lautstärke"}']


def test_invalid_utf8_is_replaced_not_raised():
    frames = split_frames(b"\xff\xfe ok\n")
    assert len(frames) == 1
    assert frames[0].endswith("ok")


def test_reset_drops_partial_line():
    framer = LineFramer()
    framer.feed(b"garbage without end")
    framer.reset()
    assert framer.pending == 0
    assert list(framer.feed(b'{"ok":true}\n')) == ['{"ok":true}']


def test_split_frames_ignores_trailing_partial():
    assert split_frames(b'{"a":1}\n{"b":') == ['{"a":1}']


def test_encode_frame_is_compact_and_terminated():
    frame = encode_frame({"cmd": "PING", "params": {}})
    assert frame == b'{"cmd":"PING","params":{}}\n'


def test_encode_frame_escapes_embedded_newlines():
    frame = encode_frame({"name": "two\nlines"})
    assert frame.count(b"\n") == 1
    assert decode_frame(frame.decode("utf-8").strip()) == {"name": "two\nlines"}


def test_decode_frame_rejects_non_objects():
    assert decode_frame("not json") is None
    assert decode_frame("[1, 2]") is None
    assert decode_frame('"PONG"') is None
    assert decode_frame('{"response":"PONG"}') == {"response": "PONG"}
