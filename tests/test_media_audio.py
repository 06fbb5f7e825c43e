import pytest

from relaymsg.media_audio import MicrophoneProcessor, PlaybackBuffer, ToneGenerator
from relaymsg.media_codec import (
    PLAYBACK_BUFFER_MAX,
    PLAYBACK_BUFFER_MIN,
    PLAYBACK_BUFFER_START,
    PLAYBACK_BUFFER_TARGET,
    AudioProcessingConfig,
    SampleFormat,
    decode_audio_frame_with_rate,
    output_sample,
)

RAW = AudioProcessingConfig(noise_suppression=False, automatic_gain_control=False)


def test_frame_size_follows_sample_rate():
    assert MicrophoneProcessor(48000, RAW).frame_samples == 960
    assert MicrophoneProcessor(8000, RAW).frame_samples == 160
    assert MicrophoneProcessor(4000, RAW).frame_samples == 160


def test_mono_frame_round_trip():
    proc = MicrophoneProcessor(8000, RAW)
    frames = proc.process([0.5] * 160, 1, SampleFormat.F32)
    assert len(frames) == 1
    rate, samples = decode_audio_frame_with_rate(frames[0])
    assert rate == 8000
    assert samples == [0.5] * 160
    assert proc.level == 0.5


def test_frames_accumulate_across_buffers():
    proc = MicrophoneProcessor(8000, RAW)
    assert proc.process([0.25] * 100, 1, SampleFormat.F32) == []
    frames = proc.process([0.25] * 100, 1, SampleFormat.F32)
    assert len(frames) == 1
    assert decode_audio_frame_with_rate(frames[0])[1] == [0.25] * 160


def test_stereo_is_downmixed():
    proc = MicrophoneProcessor(8000, RAW)
    frames = proc.process([0.25, 0.75] * 160, 2, SampleFormat.F32)
    assert len(frames) == 1
    assert decode_audio_frame_with_rate(frames[0])[1] == [0.5] * 160
    assert proc.level == 0.75


def test_noise_suppression_silences_quiet_input():
    proc = MicrophoneProcessor(
        8000, AudioProcessingConfig(noise_suppression=True, automatic_gain_control=False)
    )
    frames = proc.process([0.005] * 160, 1, SampleFormat.F32)
    assert decode_audio_frame_with_rate(frames[0])[1] == [0.0] * 160


def test_automatic_gain_raises_quiet_speech_within_bounds():
    proc = MicrophoneProcessor(
        8000, AudioProcessingConfig(noise_suppression=False, automatic_gain_control=True)
    )
    frames = proc.process([0.1] * 160, 1, SampleFormat.F32)
    samples = decode_audio_frame_with_rate(frames[0])[1]
    assert all(s > 0.1 for s in samples)
    assert samples == sorted(samples)
    assert 1.0 < proc.agc_gain <= 4.0


def test_i16_level_full_scale():
    proc = MicrophoneProcessor(8000, RAW)
    proc.process([32767, -100], 1, SampleFormat.I16)
    assert proc.level == 1.0


def test_playback_silent_until_start_threshold():
    buf = PlaybackBuffer()
    buf.push([0.5] * 100)
    out = buf.fill(10, 1, SampleFormat.F32)
    assert out == [0.0] * 10
    assert len(buf) == 100
    assert buf.playing is False


def test_playback_plays_once_buffered():
    buf = PlaybackBuffer()
    buf.push([0.5] * PLAYBACK_BUFFER_START)
    out = buf.fill(1, 2, SampleFormat.F32)
    assert out == [0.5, 0.5]
    assert buf.playing is True
    assert len(buf) == PLAYBACK_BUFFER_START - 1


def test_playback_pauses_when_low():
    buf = PlaybackBuffer()
    buf.push([0.5] * PLAYBACK_BUFFER_START)
    frames = PLAYBACK_BUFFER_START - PLAYBACK_BUFFER_MIN + 5
    out = buf.fill(frames, 1, SampleFormat.F32)
    assert buf.playing is False
    assert len(buf) == PLAYBACK_BUFFER_MIN
    assert out[-1] == 0.0


def test_push_caps_buffer():
    buf = PlaybackBuffer()
    buf.push([0.1] * (PLAYBACK_BUFFER_MAX + 500))
    assert len(buf) == PLAYBACK_BUFFER_MAX


def test_fill_trims_to_target_latency():
    buf = PlaybackBuffer()
    buf.push([0.2] * (PLAYBACK_BUFFER_TARGET + 100))
    buf.fill(10, 1, SampleFormat.F32)
    assert len(buf) == PLAYBACK_BUFFER_TARGET


def test_fill_converts_sample_format():
    buf = PlaybackBuffer()
    buf.push([0.5] * PLAYBACK_BUFFER_START)
    out = buf.fill(2, 1, SampleFormat.I16)
    assert out == [output_sample(0.5, SampleFormat.I16)] * 2


def test_tone_shape_and_bounds():
    gen = ToneGenerator(48000, 2)
    out = gen.fill(100, SampleFormat.F32)
    assert len(out) == 200
    assert out[0] == 0.0
    assert all(out[i] == out[i + 1] for i in range(0, 200, 2))
    assert max(abs(v) for v in out) <= 0.18


def test_tone_continues_between_fills():
    split = ToneGenerator(8000, 1)
    whole = ToneGenerator(8000, 1)
    parts = split.fill(5, SampleFormat.F32) + split.fill(5, SampleFormat.F32)
    assert parts == whole.fill(10, SampleFormat.F32)


def test_tone_integer_format():
    out = ToneGenerator(8000, 1).fill(20, SampleFormat.U16)
    assert all(isinstance(v, int) for v in out)
    assert out[0] == output_sample(0.0, SampleFormat.U16)


def test_tone_rejects_zero_channels():
    with pytest.raises(ValueError):
        ToneGenerator(48000, 0)