from concierge.services.sse import SSEFrameDecoder, extract_delta

from conftest import DONE_FRAME, sse_frame


def test_frames_split_on_complete_lines_only():
    decoder = SSEFrameDecoder()

    assert decoder.feed(b'data: {"choices":[{"delta":{"content":"h') == []
    assert decoder.feed(b'i"}}]}\n') == ["hi"]


def test_multibyte_character_split_across_reads():
    frame = sse_frame("蟹")
    cut = frame.index("蟹".encode("utf-8")) + 1
    decoder = SSEFrameDecoder()

    assert decoder.feed(frame[:cut]) == []
    assert decoder.feed(frame[cut:]) == ["蟹"]


def test_non_data_lines_and_comments_are_ignored():
    decoder = SSEFrameDecoder()
    payload = b": keep-alive\nevent: message\n\n" + sse_frame("ok")

    assert decoder.feed(payload) == ["ok"]


def test_malformed_frame_is_skipped_without_stopping():
    decoder = SSEFrameDecoder()
    payload = sse_frame("a") + b"data: {not json\n" + sse_frame("b")

    assert decoder.feed(payload) == ["a", "b"]
    assert decoder.skipped_frames == 1


def test_done_sentinel_stops_decoding():
    decoder = SSEFrameDecoder()

    assert decoder.feed(sse_frame("x") + DONE_FRAME + sse_frame("late")) == ["x"]
    assert decoder.done
    assert decoder.feed(sse_frame("later")) == []


def test_close_flushes_unterminated_final_line():
    decoder = SSEFrameDecoder()

    assert decoder.feed(b'data: {"choices":[{"delta":{"content":"tail"}}]}') == []
    assert decoder.close() == ["tail"]


def test_crlf_line_endings():
    decoder = SSEFrameDecoder()

    assert decoder.feed(b'data: {"choices":[{"delta":{"content":"r"}}]}\r\n\r\n') == ["r"]


def test_extract_delta_ignores_role_only_and_odd_frames():
    assert extract_delta({"choices": [{"delta": {"role": "assistant"}}]}) is None
    assert extract_delta({"choices": []}) is None
    assert extract_delta(["not", "a", "dict"]) is None
    assert extract_delta({"choices": [{"delta": {"content": "x"}}]}) == "x"


def test_frames_with_unexpected_choices_shape_are_skipped():
    decoder = SSEFrameDecoder()
    payload = (
        sse_frame("a")
        + b'data: {"choices": {"x": 1}}\n'
        + b'data: {"choices": 5}\n'
        + b'data: {"choices": ["text"]}\n'
        + sse_frame("b")
    )

    assert decoder.feed(payload) == ["a", "b"]
    assert decoder.skipped_frames == 3


def test_extract_delta_rejects_non_list_choices():
    assert extract_delta({"choices": {"x": 1}}) is None
    assert extract_delta({"choices": 5}) is None
    assert extract_delta({"choices": [{"delta": "flat"}]}) is None
