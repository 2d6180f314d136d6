import json
from pathlib import Path

import pytest

from wivrn.configuration import (
    Configuration,
    EncoderConfig,
    config_file_path,
    parse_configuration,
    read_user_configuration,
)
from wivrn.packets import VideoCodec


def test_path_uses_xdg_config_home():
    path = config_file_path({"XDG_CONFIG_HOME": "/cfg", "HOME": "/home/u"})
    assert path == Path("/cfg") / "wivrn" / "config.json"


def test_path_falls_back_to_home():
    path = config_file_path({"HOME": "/home/u"})
    assert path == Path("/home/u") / ".config" / "wivrn" / "config.json"


def test_path_without_environment():
    assert config_file_path({}) == Path(".") / "wivrn" / "config.json"


def test_scalar_scale_is_duplicated():
    assert parse_configuration({"scale": 0.5}).scale == (0.5, 0.5)


def test_pair_scale():
    assert parse_configuration({"scale": [0.5, 0.75]}).scale == (0.5, 0.75)


def test_bad_scale_raises():
    with pytest.raises(ValueError):
        parse_configuration({"scale": "big"})


def test_encoders_parsed():
    config = parse_configuration(
        {
            "encoders": [
                {
                    "encoder": "x264",
                    "width": 0.5,
                    "offset_x": 0.5,
                    "bitrate": 1000,
                    "group": 2,
                    "codec": "avc",
                    "options": {"preset": "fast"},
                },
                {"encoder": "vaapi", "codec": "hevc"},
            ]
        }
    )
    first, second = config.encoders
    assert first == EncoderConfig(
        name="x264",
        width=0.5,
        offset_x=0.5,
        bitrate=1000,
        group=2,
        codec=VideoCodec.H264,
        options={"preset": "fast"},
    )
    assert second.name == "vaapi"
    assert second.codec is VideoCodec.H265
    assert second.width is None


@pytest.mark.parametrize(
    "name, codec",
    [("h264", VideoCodec.H264), ("avc", VideoCodec.H264), ("h265", VideoCodec.H265), ("hevc", VideoCodec.H265)],
)
def test_codec_aliases(name, codec):
    config = parse_configuration({"encoders": [{"encoder": "x264", "codec": name}]})
    assert config.encoders[0].codec is codec


def test_invalid_codec_raises():
    with pytest.raises(ValueError, match="invalid codec"):
        parse_configuration({"encoders": [{"encoder": "x264", "codec": "vp9"}]})


def test_encoder_name_required():
    with pytest.raises(ValueError):
        parse_configuration({"encoders": [{"width": 1}]})


def test_application_string_and_list():
    assert parse_configuration({"application": "steam"}).application == ["steam"]
    assert parse_configuration({"application": ["a", "b"]}).application == ["a", "b"]


def test_json_text_accepted():
    config = parse_configuration(json.dumps({"application": "steam"}))
    assert config.application == ["steam"]


def test_non_object_document_is_empty():
    assert parse_configuration("[1, 2]") == Configuration()


def test_missing_file_gives_empty(tmp_path):
    assert read_user_configuration(tmp_path / "none.json") == Configuration()


def test_invalid_file_gives_empty(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    assert read_user_configuration(path) == Configuration()


def test_invalid_codec_file_gives_empty(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scale": 1, "encoders": [{"encoder": "x", "codec": "bad"}]}), encoding="utf-8")
    assert read_user_configuration(path) == Configuration()


def test_valid_file_read(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scale": [1, 2], "application": "game"}), encoding="utf-8")
    config = read_user_configuration(path)
    assert config.scale == (1.0, 2.0)
    assert config.application == ["game"]