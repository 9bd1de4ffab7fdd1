import pytest

from capsim.core import constants
from capsim.core.codec import (
    FieldType, MessagePattern, MessageTemplate, format_message, match, render_value,
    saturate, wrap,
)
from capsim.core.errors import CodecError, ConfigurationError, MalformedMessage
from capsim.core.streams import CameraSnapshotPublisher


def test_format_camera_snapshot_local():
    line = format_message("ac", CameraSnapshotPublisher.TEMPLATE, (12345, 0, 0, 1, 30.1, 33.3))
    # floats go through single precision like the payload computer (33.3f -> 33.299999)
    assert line == "ac CAMERA_SNAPSHOT 12345 0 0 1 30.100000 33.299999"


def test_forwarded_template_adds_aircraft_id():
    fwd = CameraSnapshotPublisher.TEMPLATE.forwarded()
    assert fwd.name == "CAMERA_SNAPSHOT_DL"
    assert fwd.field_names[0] == "ac_id"
    line = format_message("ac", fwd, ("ac", 12345, 1, 2, 1, 30.1, 30.1))
    assert line.split()[:4] == ["ac", "CAMERA_SNAPSHOT_DL", "ac", "12345"]


def test_nan_is_a_legal_float_payload():
    assert render_value(float("nan"), FieldType.FLOAT) == "nan"
    assert render_value(2.0, FieldType.FLOAT) == "2.000000"


@pytest.mark.parametrize("value,ftype", [
    (256, FieldType.UINT8),
    (-1, FieldType.UINT16),
    (2 ** 32, FieldType.UINT32),
    (2 ** 31, FieldType.INT32),
    (1.5, FieldType.UINT8),
    (float("nan"), FieldType.INT32),
    ("abc", FieldType.UINT8),
    ("two words", FieldType.STRING),
    ("", FieldType.STRING),
])
def test_render_rejects_values_outside_the_declared_type(value, ftype):
    with pytest.raises(CodecError):
        render_value(value, ftype)


def test_format_wrong_value_count():
    tpl = MessageTemplate("TEST", (("a", FieldType.UINT8),))
    with pytest.raises(CodecError):
        format_message("ac", tpl, (1, 2))


def test_format_then_match_gives_back_the_tokens():
    tpl = MessageTemplate("TEST", (
        ("a", FieldType.UINT8), ("b", FieldType.INT32), ("c", FieldType.FLOAT), ("d", FieldType.STRING),
    ))
    line = format_message("node", tpl, (7, -5, 1.5, "x"))
    fields = match(MessagePattern.from_name("TEST", 4), line)
    assert fields == ["7", "-5", "1.500000", "x"]


def test_parse_inbound_patterns():
    expected = {
        constants.WP_MOVED: ("WP_MOVED", 5),
        constants.VECTORNAV_INFO: ("VECTORNAV_INFO", 9),
        constants.ATTITUDE: ("ATTITUDE", 3),
        constants.GPS_LLA: ("GPS_LLA", 10),
        constants.ROTORCRAFT_FP: ("ROTORCRAFT_FP", 14),
    }
    for text, (name, arity) in expected.items():
        p = MessagePattern.parse(text)
        assert (p.name, p.arity) == (name, arity)
        assert p.text == text


def test_from_name_builds_the_canonical_text():
    assert MessagePattern.from_name("ATTITUDE", 3).text == constants.ATTITUDE


@pytest.mark.parametrize("text", ["", "ATTITUDE", r"^(\S*) (\S*)", r"^(.*) ATTITUDE (\S*)"])
def test_parse_rejects_unsupported_patterns(text):
    with pytest.raises(ConfigurationError):
        MessagePattern.parse(text)


def test_match_is_total_or_none():
    p = MessagePattern.parse(constants.ATTITUDE)
    assert match(p, "ac1 ATTITUDE 0.1 0.2 0.3") == ["0.1", "0.2", "0.3"]
    assert match(p, "ac1 GPS_LLA 0.1 0.2 0.3") is None
    assert match(p, "") is None
    assert match(p, "ac1") is None
    with pytest.raises(MalformedMessage):
        match(p, "ac1 ATTITUDE 0.1 0.2")
    with pytest.raises(MalformedMessage):
        match(p, "ac1 ATTITUDE 0.1 0.2 0.3 0.4")


def test_wrap_and_saturate():
    assert wrap(65536, FieldType.UINT16) == 0
    assert wrap(65537, FieldType.UINT16) == 1
    assert wrap(-1, FieldType.UINT8) == 255
    assert saturate(2 ** 31, FieldType.INT32) == 2 ** 31 - 1
    assert saturate(-(2 ** 40), FieldType.INT32) == -(2 ** 31)
