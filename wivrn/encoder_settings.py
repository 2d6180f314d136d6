"""Choice of video encoders and of the part of the image each one encodes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from .configuration import Configuration, read_user_configuration
from .packets import VideoCodec, VideoStreamItem

__all__ = [
    "DEFAULT_BITRATE",
    "ENCODER_NVENC",
    "ENCODER_VAAPI",
    "ENCODER_X264",
    "EncoderSettings",
    "default_encoder_settings",
    "get_encoder_settings",
]

_log = logging.getLogger(__name__)

DEFAULT_BITRATE = 50_000_000
"""Bitrate in bit/s used when the configuration gives none."""

ENCODER_NVENC = "nvenc"
ENCODER_VAAPI = "vaapi"
ENCODER_X264 = "x264"


@dataclass
class EncoderSettings(VideoStreamItem):
    """A video stream item together with the encoder that produces it."""

    encoder_name: str = ""
    bitrate: int = 0
    options: dict[str, str] = field(default_factory=dict)
    # Encoders of the same group run one after another.
    group: int = 0


def default_encoder_settings(width: int, height: int, nvidia: bool = False) -> list[EncoderSettings]:
    """A single full-size H.265 encoder suited to the GPU vendor."""
    return [
        EncoderSettings(
            width=width,
            height=height,
            video_width=width,
            video_height=height,
            codec=VideoCodec.H265,
            bitrate=DEFAULT_BITRATE,
            encoder_name=ENCODER_NVENC if nvidia else ENCODER_VAAPI,
        )
    ]


def _from_configuration(width: int, height: int, config: Configuration) -> list[EncoderSettings]:
    result: list[EncoderSettings] = []
    next_group = 0
    for encoder in config.encoders:
        item_width = math.ceil((1 if encoder.width is None else encoder.width) * width)
        item_height = math.ceil((1 if encoder.height is None else encoder.height) * height)
        settings = EncoderSettings(
            encoder_name=encoder.name,
            width=item_width,
            height=item_height,
            video_width=item_width,
            video_height=item_height,
            offset_x=math.ceil((encoder.offset_x or 0) * width),
            offset_y=math.ceil((encoder.offset_y or 0) * height),
            bitrate=DEFAULT_BITRATE if encoder.bitrate is None else encoder.bitrate,
            codec=VideoCodec.H264 if encoder.codec is None else encoder.codec,
            group=next_group if encoder.group is None else encoder.group,
            options=dict(encoder.options),
        )
        next_group = max(next_group, settings.group + 1)
        result.append(settings)
    return result


def get_encoder_settings(
    width: int, height: int, nvidia: bool = False, config: Configuration | None = None
) -> list[EncoderSettings]:
    """Encoder settings from the configuration, or the defaults when it lists none.

    ``config`` defaults to the user configuration file.
    """
    try:
        if config is None:
            config = read_user_configuration()
        if config.encoders:
            return _from_configuration(width, height, config)
    except (ValueError, TypeError, OverflowError) as exc:
        _log.error("Failed to read encoder configuration: %s", exc)
    return default_encoder_settings(width, height, nvidia)