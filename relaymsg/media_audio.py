"""Microphone frame building, jitter-buffered playback and the call tone."""

from __future__ import annotations

import math
import threading
from collections import deque
from typing import Iterable, Optional, Sequence

from relaymsg.media_codec import (
    PLAYBACK_BUFFER_MAX,
    PLAYBACK_BUFFER_MIN,
    PLAYBACK_BUFFER_START,
    PLAYBACK_BUFFER_TARGET,
    AudioProcessingConfig,
    SampleFormat,
    encode_audio_frame,
    output_sample,
    peak_level,
    sample_level_signed,
)

NOISE_GATE_LEVEL = 0.012
AGC_TARGET_LEVEL = 0.18
AGC_MIN_GAIN = 0.5
AGC_MAX_GAIN = 4.0
AGC_SILENCE_LEVEL = 0.001
TONE_AMPLITUDE = 0.18
TONE_LOW_HZ = 740.0
TONE_HIGH_HZ = 920.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class MicrophoneProcessor:
    """Turns raw device buffers into mono RSA1 frames of 20 ms each.

    The peak level of the most recent buffer is kept in ``level``.
    """

    def __init__(
        self, sample_rate: int, processing: Optional[AudioProcessingConfig] = None
    ) -> None:
        self.sample_rate = sample_rate
        self.processing = processing or AudioProcessingConfig()
        self.frame_samples = max(sample_rate // 50, 160)
        self.level = 0.0
        self._agc_gain = 1.0
        self._frame: list[float] = []

    @property
    def agc_gain(self) -> float:
        return self._agc_gain

    def _downmix(self, data: Sequence[float], channels: int, sample_format: SampleFormat):
        step = max(channels, 1)
        for start in range(0, len(data), step):
            chunk = data[start:start + step]
            total = sum(sample_level_signed(value, sample_format) for value in chunk)
            yield total / max(len(chunk), 1)

    def process(
        self, data: Sequence[float], channels: int, sample_format: SampleFormat
    ) -> list[bytes]:
        """Feed one device buffer; return the encoded frames it completed."""
        self.level = peak_level(data, sample_format)
        completed: list[bytes] = []
        for mono in self._downmix(data, channels, sample_format):
            if self.processing.noise_suppression and abs(mono) < NOISE_GATE_LEVEL:
                mono = 0.0
            if self.processing.automatic_gain_control:
                magnitude = abs(mono)
                if magnitude > AGC_SILENCE_LEVEL:
                    target_gain = _clamp(AGC_TARGET_LEVEL / magnitude, AGC_MIN_GAIN, AGC_MAX_GAIN)
                    self._agc_gain = _clamp(
                        self._agc_gain * 0.995 + target_gain * 0.005, AGC_MIN_GAIN, AGC_MAX_GAIN
                    )
                mono *= self._agc_gain
            self._frame.append(_clamp(mono, -1.0, 1.0))
            if len(self._frame) >= self.frame_samples:
                completed.append(encode_audio_frame(self.sample_rate, self._frame))
                self._frame = []
        return completed


class PlaybackBuffer:
    """A thread-safe queue of received samples that feeds the speaker.

    Playback starts once enough audio has been buffered, pauses when the
    buffer runs low, and drops the oldest audio to keep latency bounded.
    """

    def __init__(self) -> None:
        self._queue: deque[float] = deque()
        self._lock = threading.Lock()
        self.playing = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def _trim(self, limit: int) -> None:
        while len(self._queue) > limit:
            self._queue.popleft()

    def push(self, samples: Iterable[float]) -> None:
        with self._lock:
            self._queue.extend(samples)
            self._trim(PLAYBACK_BUFFER_MAX)

    def fill(
        self, frame_count: int, channels: int, sample_format: SampleFormat
    ) -> list[float | int]:
        """Produce ``frame_count`` interleaved output frames of ``channels`` samples."""
        channels = max(channels, 1)
        out: list[float | int] = []
        with self._lock:
            for _ in range(frame_count):
                if not self.playing and len(self._queue) >= PLAYBACK_BUFFER_START:
                    self.playing = True
                if self.playing and len(self._queue) <= PLAYBACK_BUFFER_MIN:
                    self.playing = False
                self._trim(PLAYBACK_BUFFER_MAX)
                self._trim(PLAYBACK_BUFFER_TARGET + frame_count)
                if self.playing and self._queue:
                    value = self._queue.popleft()
                else:
                    value = 0.0
                out.extend([output_sample(value, sample_format)] * channels)
        return out


class ToneGenerator:
    """The ringing tone: two alternating pitches switching every quarter second."""

    def __init__(self, sample_rate: int, channels: int) -> None:
        if sample_rate <= 0:
            raise ValueError("sample rate must be positive")
        if channels < 1:
            raise ValueError("channel count must be positive")
        self.sample_rate = sample_rate
        self.channels = channels
        self._index = 0

    def fill(self, frame_count: int, sample_format: SampleFormat) -> list[float | int]:
        out: list[float | int] = []
        for _ in range(frame_count):
            t = self._index / self.sample_rate
            frequency = TONE_LOW_HZ if int(t * 4.0) % 2 == 0 else TONE_HIGH_HZ
            value = math.sin(t * frequency * math.tau) * TONE_AMPLITUDE
            out.extend([output_sample(value, sample_format)] * self.channels)
            self._index += 1
        return out