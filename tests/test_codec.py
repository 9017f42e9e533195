"""Tests for telemetry frame sanitizing and decoding."""

import pytest

from suspension_tuner.errors import ProtocolDecodeError
from suspension_tuner.telemetry.codec import decode_frame, decode_json, sanitize_frame


@pytest.mark.parametrize("token", ["nan", "NaN", "NAN", "inf", "-inf", "Inf", "-INF"])
def test_non_finite_field_decodes_to_none(token):
    frame = f'{{"type":"telemetry","roll":{token},"pitch":1.5}}'

    message = decode_frame(frame)

    assert message == {"type": "telemetry", "roll": None, "pitch": 1.5}


def test_non_finite_tokens_inside_arrays_are_replaced():
    frame = '{"type":"battery","voltages":[nan, 11.1, -inf]}'

    message = decode_frame(frame)

    assert message["voltages"] == [None, 11.1, None]


def test_quoted_tokens_are_left_alone():
    text = '{"type":"status","message":"roll is nan, pitch inf"}'

    assert sanitize_frame(text) == text
    assert decode_frame(text)["message"] == "roll is nan, pitch inf"


def test_words_containing_tokens_are_not_rewritten():
    text = '{"info":"x","nanny":1}'

    assert sanitize_frame(text) == text


def test_plain_text_frames_are_ignored():
    assert decode_frame("  Starting recalibration...") is None
    assert decode_frame("[1, 2, 3]") is None


def test_binary_frames_are_decoded_as_text():
    message = decode_frame(b'{"type":"telemetry","yaw":NaN}')

    assert message == {"type": "telemetry", "yaw": None}


def test_malformed_object_frame_raises_decode_error():
    with pytest.raises(ProtocolDecodeError):
        decode_frame('{"type":"telemetry","roll":')


def test_invalid_utf8_raises_decode_error():
    with pytest.raises(ProtocolDecodeError):
        decode_frame(b'{"type":"\xff"}')


def test_decode_json_accepts_sensor_body():
    payload = decode_json('{"roll":nan,"pitch":-2.5,"batteries":[11.10,inf,0.00]}')

    assert payload == {"roll": None, "pitch": -2.5, "batteries": [11.1, None, 0.0]}
