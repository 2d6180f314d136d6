"""User configuration of the streaming server, read from a JSON file.

The file lives at ``$XDG_CONFIG_HOME/wivrn/config.json``, falling back to
``$HOME/.config/wivrn/config.json``.  It may hold:

* ``scale``: one number, or a pair of numbers, applied to the eye size;
* ``encoders``: a list of encoder descriptions;
* ``application``: a command, as a string or a list of strings.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .packets import VideoCodec

__all__ = [
    "EncoderConfig",
    "Configuration",
    "config_file_path",
    "parse_configuration",
    "read_user_configuration",
]

_log = logging.getLogger(__name__)

_CODECS = {
    "h264": VideoCodec.H264,
    "avc": VideoCodec.H264,
    "h265": VideoCodec.H265,
    "hevc": VideoCodec.H265,
}


@dataclass
class EncoderConfig:
    """One encoder entry; sizes and offsets are fractions of the eye size."""

    name: str
    width: float | None = None
    height: float | None = None
    offset_x: float | None = None
    offset_y: float | None = None
    bitrate: int | None = None
    group: int | None = None
    codec: VideoCodec | None = None
    options: dict[str, str] = field(default_factory=dict)


@dataclass
class Configuration:
    """Whole user configuration; empty when there is no valid file."""

    encoders: list[EncoderConfig] = field(default_factory=list)
    scale: tuple[float, float] | None = None
    application: list[str] = field(default_factory=list)


def config_file_path(environ: Mapping[str, str] | None = None) -> Path:
    """Location of the configuration file for the given environment."""
    if environ is None:
        environ = os.environ
    xdg_config_home = environ.get("XDG_CONFIG_HOME")
    if xdg_config_home is not None:
        base = Path(xdg_config_home)
    elif environ.get("HOME") is not None:
        base = Path(environ["HOME"]) / ".config"
    else:
        base = Path(".")
    return base / "wivrn" / "config.json"


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return float(value)


def _integer(value: Any, name: str) -> int:
    return int(_number(value, name))


def _string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {value!r}")
    return value


def _codec(value: Any) -> VideoCodec:
    codec = _CODECS.get(value) if isinstance(value, str) else None
    if codec is None:
        raise ValueError(f"invalid codec value {value}")
    return codec


def _encoder(entry: Any) -> EncoderConfig:
    if not isinstance(entry, dict):
        raise ValueError(f"encoder entry must be an object, got {entry!r}")
    if "encoder" not in entry:
        raise ValueError("encoder entry has no 'encoder' key")
    encoder = EncoderConfig(name=_string(entry["encoder"], "encoder"))
    for name in ("width", "height", "offset_x", "offset_y"):
        if name in entry:
            setattr(encoder, name, _number(entry[name], name))
    for name in ("bitrate", "group"):
        if name in entry:
            setattr(encoder, name, _integer(entry[name], name))
    if "codec" in entry:
        encoder.codec = _codec(entry["codec"])
    if "options" in entry:
        options = entry["options"]
        if not isinstance(options, dict):
            raise ValueError(f"options must be an object, got {options!r}")
        encoder.options = {
            _string(key, "option name"): _string(value, f"option {key}") for key, value in options.items()
        }
    return encoder


def parse_configuration(data: Any) -> Configuration:
    """Build a configuration from JSON text or an already decoded document.

    Raises ValueError on malformed content.
    """
    if isinstance(data, (str, bytes, bytearray)):
        data = json.loads(data)
    result = Configuration()
    if not isinstance(data, dict):
        return result

    if "scale" in data:
        scale = data["scale"]
        if isinstance(scale, (int, float)) and not isinstance(scale, bool):
            result.scale = (float(scale), float(scale))
        else:
            if not isinstance(scale, list) or len(scale) != 2:
                raise ValueError(f"scale must be a number or a pair of numbers, got {scale!r}")
            result.scale = (_number(scale[0], "scale"), _number(scale[1], "scale"))

    if "encoders" in data:
        encoders = data["encoders"]
        if not isinstance(encoders, list):
            raise ValueError(f"encoders must be a list, got {encoders!r}")
        result.encoders = [_encoder(entry) for entry in encoders]

    if "application" in data:
        application = data["application"]
        if isinstance(application, str):
            result.application = [application]
        elif isinstance(application, list):
            result.application = [_string(item, "application") for item in application]
        else:
            raise ValueError(f"application must be a string or a list, got {application!r}")

    return result


def read_user_configuration(path: str | os.PathLike[str] | None = None) -> Configuration:
    """Read the configuration file; a missing or invalid file gives an empty configuration."""
    config_path = Path(path) if path is not None else config_file_path()
    if not config_path.exists():
        return Configuration()
    try:
        return parse_configuration(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _log.error("Invalid configuration file: %s", exc)
        return Configuration()