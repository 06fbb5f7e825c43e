"""Wire formats and sample conversions for call audio and video frames."""

from __future__ import annotations

import enum
import math
import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

SYSTEM_DEFAULT_DEVICE = "System default"
AUDIO_SAMPLE_RATE = 48_000
PLAYBACK_BUFFER_START = AUDIO_SAMPLE_RATE // 10
PLAYBACK_BUFFER_MIN = AUDIO_SAMPLE_RATE // 25
PLAYBACK_BUFFER_TARGET = AUDIO_SAMPLE_RATE // 5
PLAYBACK_BUFFER_MAX = AUDIO_SAMPLE_RATE * 2
OPUS_SAMPLE_RATE = 48_000
OPUS_FRAME_SAMPLES = 960
OPUS_MAX_PACKET_BYTES = 1275
VIDEO_CLOCK_RATE = 90_000
VIDEO_FRAME_DURATION_MS = 42
CAMERA_FRAME_INTERVAL_MS = 42
PREVIEW_MAX_WIDTH = 320

AUDIO_MAGIC = b"RSA1"
VIDEO_MAGIC = b"RSV1"
H264_MAGIC = b"RSH1"

_AUDIO_HEADER = struct.Struct("<4sI")
_VIDEO_HEADER = struct.Struct("<4sIIQ")
_F32 = struct.Struct("<f")
_U32_MAX = 0xFFFFFFFF
_I16_MAX = 32767


@dataclass
class IceConfig:
    servers: list[str] = field(default_factory=list)
    turn_username: str = ""
    turn_password: str = ""


@dataclass(frozen=True)
class AudioProcessingConfig:
    noise_suppression: bool = True
    automatic_gain_control: bool = True


@dataclass
class VideoFrameInfo:
    width: int = 0
    height: int = 0
    frames: int = 0
    rgb: bytes = b""


class SampleFormat(enum.Enum):
    F32 = "f32"
    I16 = "i16"
    U16 = "u16"


def _f32(value: float) -> float:
    return _F32.unpack(_F32.pack(value))[0]


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return value
    return max(low, min(high, value))


def ice_servers(ice_config: IceConfig) -> list[dict[str, object]]:
    """ICE server entries for every non-blank server, sharing the TURN credentials."""
    return [
        {
            "urls": [server],
            "username": ice_config.turn_username,
            "credential": ice_config.turn_password,
        }
        for server in ice_config.servers
        if server.strip()
    ]


def sample_level_signed(value: float, sample_format: SampleFormat) -> float:
    """A device sample as a signed level in roughly [-1, 1]."""
    if sample_format is SampleFormat.F32:
        return float(value)
    if sample_format is SampleFormat.I16:
        return value / _I16_MAX
    if sample_format is SampleFormat.U16:
        return (value - 32768.0) / 32768.0
    raise ValueError(f"unsupported sample format: {sample_format!r}")


def sample_level(value: float, sample_format: SampleFormat) -> float:
    """The magnitude of a device sample as a level in roughly [0, 1]."""
    return abs(sample_level_signed(value, sample_format))


def output_sample(value: float, sample_format: SampleFormat) -> float | int:
    """Convert a float level to a device sample, clamping to [-1, 1]."""
    clamped = _clamp(float(value), -1.0, 1.0)
    if sample_format is SampleFormat.F32:
        return clamped
    if math.isnan(clamped):
        return 0
    if sample_format is SampleFormat.I16:
        return int(clamped * _I16_MAX)
    if sample_format is SampleFormat.U16:
        return int(clamped * 32767.0 + 32768.0)
    raise ValueError(f"unsupported sample format: {sample_format!r}")


def peak_level(samples: Iterable[float], sample_format: SampleFormat) -> float:
    """The loudest sample's level, clamped to [0, 1]; NaN levels are ignored."""
    peak = 0.0
    for sample in samples:
        level = sample_level(sample, sample_format)
        if not math.isnan(level) and level > peak:
            peak = level
    return _clamp(peak, 0.0, 1.0)


def encode_audio_frame(sample_rate: int, samples: Iterable[float]) -> bytes:
    """Pack mono float samples behind the RSA1 header and the sample rate."""
    body = b"".join(_F32.pack(sample) for sample in samples)
    return _AUDIO_HEADER.pack(AUDIO_MAGIC, sample_rate) + body


def decode_audio_frame_with_rate(payload: bytes) -> Optional[tuple[int, list[float]]]:
    """Unpack an RSA1 frame into (sample rate, samples); trailing bytes are ignored."""
    if len(payload) < _AUDIO_HEADER.size or payload[:4] != AUDIO_MAGIC:
        return None
    _, sample_rate = _AUDIO_HEADER.unpack_from(payload)
    body = payload[_AUDIO_HEADER.size:]
    usable = len(body) - len(body) % _F32.size
    samples = [
        _clamp(value, -1.0, 1.0) for (value,) in _F32.iter_unpack(body[:usable])
    ]
    return sample_rate, samples


def decode_audio_frame(payload: bytes) -> Optional[list[float]]:
    decoded = decode_audio_frame_with_rate(payload)
    return None if decoded is None else decoded[1]


def decode_video_frame(payload: bytes) -> Optional[VideoFrameInfo]:
    """Unpack a raw RSV1 RGB frame, rejecting any whose size does not match."""
    if len(payload) < _VIDEO_HEADER.size or payload[:4] != VIDEO_MAGIC:
        return None
    _, width, height, frames = _VIDEO_HEADER.unpack_from(payload)
    if len(payload) - _VIDEO_HEADER.size != width * height * 3:
        return None
    return VideoFrameInfo(
        width=width, height=height, frames=frames, rgb=bytes(payload[_VIDEO_HEADER.size:])
    )


def encode_h264_video_frame(width: int, height: int, frames: int, h264: bytes) -> bytes:
    """Pack an H.264 bitstream behind the RSH1 header."""
    return _VIDEO_HEADER.pack(H264_MAGIC, width, height, frames) + bytes(h264)


def parse_h264_video_frame(payload: bytes) -> Optional[tuple[int, int, int, bytes]]:
    """Split an RSH1 frame into (width, height, frame count, bitstream)."""
    if len(payload) < _VIDEO_HEADER.size or payload[:4] != H264_MAGIC:
        return None
    _, width, height, frames = _VIDEO_HEADER.unpack_from(payload)
    return width, height, frames, bytes(payload[_VIDEO_HEADER.size:])


def resample_to_opus(sample_rate: int, samples: Sequence[float]) -> list[float]:
    """Linearly resample a frame to one 20 ms Opus frame at 48 kHz."""
    if sample_rate == OPUS_SAMPLE_RATE and len(samples) == OPUS_FRAME_SAMPLES:
        return list(samples)
    if not samples:
        return [0.0] * OPUS_FRAME_SAMPLES
    ratio = _f32(_f32(sample_rate) / _f32(OPUS_SAMPLE_RATE))
    last = len(samples) - 1
    out = []
    for index in range(OPUS_FRAME_SAMPLES):
        source = _f32(_f32(index) * ratio)
        lower = math.floor(source)
        if lower > last:
            raise ValueError("not enough samples to resample the frame")
        upper = min(lower + 1, last)
        mix = _f32(source - lower)
        value = _f32(samples[lower] * (1.0 - mix) + samples[upper] * mix)
        out.append(_clamp(value, -1.0, 1.0))
    return out


def even_dimension(value: int) -> int:
    """Clamp to at least 2 and round down to an even number."""
    return max(2, min(value, _U32_MAX)) & ~1


def preview_rgb(width: int, height: int, rgb: bytes) -> tuple[int, int, bytes]:
    """Scale an RGB image to at most 320 pixels wide by nearest-neighbour sampling."""
    target_width = even_dimension(min(width, PREVIEW_MAX_WIDTH))
    target_height = max(1, (max(height, 1) * target_width) // max(width, 1))
    target_height = even_dimension(target_height)
    if target_width == width and target_height == height:
        return width, height, bytes(rgb)
    out = bytearray(target_width * target_height * 3)
    for y in range(target_height):
        source_y = y * height // target_height
        for x in range(target_width):
            source_x = x * width // target_width
            source = (source_y * width + source_x) * 3
            target = (y * target_width + x) * 3
            if source + 2 < len(rgb) and target + 2 < len(out):
                out[target:target + 3] = rgb[source:source + 3]
    return target_width, target_height, bytes(out)