"""
memoscribe.audio.normalizer - Decode audio into a recognizer's sample format.

Decodes an audio file with soundfile (FFmpeg for containers libsndfile
cannot open) and converts it to the target sample rate, channel count
and sample encoding. When the source already matches the target, the
samples are copied through untouched.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import numpy as np

from memoscribe.exceptions import AllocationError, ConversionError, DecodeError
from memoscribe.logging import logger
from memoscribe.models import AudioFormat, AudioSample

# libsndfile subtypes that decode bit-exactly into one of our encodings
SUBTYPE_ENCODINGS = {
    "PCM_16": "int16",
    "FLOAT": "float32",
}

INT16_SCALE = 32768.0


def estimate_capacity(input_frames: int, source_rate: int, target_rate: int) -> int:
    """Output buffer size for a single-shot rate conversion.

    ceil(input_frames * target_rate / source_rate) + 1, computed in integer
    arithmetic so rounding can never truncate the converter's output.
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError("sample rates must be positive")
    if input_frames <= 0:
        return 1
    return -(-input_frames * target_rate // source_rate) + 1


def normalize_audio(
    audio_path: Path,
    target: AudioFormat,
    console=None,
) -> AudioSample:
    """Decode an audio file and convert it to the target format.

    Args:
        audio_path: Path to any audio file soundfile or FFmpeg can decode
        target: Sample format required by the recognition engine
        console: Optional rich console for output

    Returns:
        AudioSample in exactly the target format

    Raises:
        DecodeError: If the file cannot be opened or decoded
        AllocationError: If the output buffer cannot be allocated
        ConversionError: If resampling or format conversion fails
    """
    if console:
        console.print(f"[dim]  Decoding {audio_path.name}...[/dim]")

    data, source_format, exact = decode_audio(audio_path)
    return normalize_samples(data, source_format, target, exact=exact)


def decode_audio(audio_path: Path) -> tuple[np.ndarray, AudioFormat, bool]:
    """Decode an audio file into a (frames, channels) array.

    Returns:
        Tuple of (samples, source_format, exact). ``exact`` is True when the
        samples are the file's own stored values in ``source_format.encoding``.

    Raises:
        DecodeError: If neither soundfile nor FFmpeg can decode the file
    """
    if not audio_path.exists():
        raise DecodeError(f"Audio file not found: {audio_path}")

    try:
        return _decode_soundfile(audio_path)
    except (RuntimeError, OSError) as e:
        logger.debug("soundfile could not open %s (%s), trying FFmpeg", audio_path, e)

    try:
        return _decode_ffmpeg(audio_path)
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f"Failed to decode audio {audio_path}: {e}") from e


def _decode_soundfile(audio_path: Path) -> tuple[np.ndarray, AudioFormat, bool]:
    """Decode using soundfile, keeping stored sample values when possible."""
    import soundfile as sf

    with sf.SoundFile(str(audio_path)) as f:
        encoding = SUBTYPE_ENCODINGS.get(f.subtype)
        sample_rate = f.samplerate
        channels = f.channels
        data = f.read(dtype=encoding or "float32", always_2d=True)

    source_format = AudioFormat(
        sample_rate=sample_rate,
        channels=channels,
        encoding=encoding or "float32",
    )
    return data, source_format, encoding is not None


def _probe_audio_stream(audio_path: Path) -> tuple[int, int]:
    """Get (sample_rate, channels) of the first audio stream using ffprobe."""
    cmd = [
        "ffprobe",
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_streams",
        "-select_streams",
        "a:0",
        str(audio_path),
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True)
    if proc.returncode != 0:
        raise DecodeError(f"ffprobe failed for {audio_path}: {proc.stderr}")

    streams = json.loads(proc.stdout).get("streams", [])
    if not streams:
        raise DecodeError(f"No audio stream in {audio_path}")

    stream = streams[0]
    return int(stream.get("sample_rate", 0)), int(stream.get("channels", 0))


def _decode_ffmpeg(audio_path: Path) -> tuple[np.ndarray, AudioFormat, bool]:
    """Decode using FFmpeg to raw float32 at the stream's native rate and layout."""
    sample_rate, channels = _probe_audio_stream(audio_path)
    if sample_rate <= 0 or channels <= 0:
        raise DecodeError(f"Unreadable stream parameters in {audio_path}")

    cmd = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(audio_path),
        "-vn",
        "-f",
        "f32le",
        "-acodec",
        "pcm_f32le",
        "-",
    ]
    proc = subprocess.run(cmd, capture_output=True)
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace")
        raise DecodeError(f"FFmpeg decode failed for {audio_path}: {stderr}")

    samples = np.frombuffer(proc.stdout, dtype=np.float32)
    usable = len(samples) - len(samples) % channels
    data = samples[:usable].reshape(-1, channels)

    source_format = AudioFormat(sample_rate=sample_rate, channels=channels, encoding="float32")
    return data, source_format, False


def normalize_samples(
    data: np.ndarray,
    source_format: AudioFormat,
    target: AudioFormat,
    exact: bool = True,
) -> AudioSample:
    """Convert an in-memory buffer to the target format.

    Args:
        data: Samples shaped (frames,) for mono or (frames, channels)
        source_format: Format ``data`` is stored in
        target: Required output format
        exact: Whether ``data`` holds the source's stored values unmodified

    Returns:
        AudioSample in the target format. Mono output is 1-D.
    """
    frames = data.reshape(-1, source_format.channels)

    if exact and source_format == target and frames.dtype == target.dtype:
        logger.debug("Source already %s, copying samples", target)
        return AudioSample(data=_shape_output(frames.copy(), target), format=target)

    logger.debug("Converting %s -> %s (%d frames)", source_format, target, len(frames))

    try:
        signal = _to_float(frames, source_format.encoding)
        signal = _remix(signal, target.channels)
    except ValueError as e:
        raise ConversionError(f"Channel conversion failed: {e}") from e

    capacity = estimate_capacity(len(signal), source_format.sample_rate, target.sample_rate)
    buffer = _allocate(capacity, target.channels)

    if len(signal) and source_format.sample_rate != target.sample_rate:
        converted = _resample(signal, source_format.sample_rate, target.sample_rate)
    else:
        converted = signal

    produced = len(converted)
    if produced > capacity:
        raise ConversionError(f"Converter produced {produced} frames, capacity was {capacity}")
    buffer[:produced] = converted
    output = buffer[:produced]

    return AudioSample(data=_shape_output(_encode(output, target.encoding), target), format=target)


def _to_float(frames: np.ndarray, encoding: str) -> np.ndarray:
    if encoding == "int16" or frames.dtype == np.int16:
        return frames.astype(np.float32) / INT16_SCALE
    return frames.astype(np.float32, copy=False)


def _remix(signal: np.ndarray, channels: int) -> np.ndarray:
    """Mix down (mean) or up (repeat) to the requested channel count."""
    if signal.shape[1] == channels:
        return signal
    mono = signal.mean(axis=1, keepdims=True, dtype=np.float32)
    if channels == 1:
        return mono
    return np.repeat(mono, channels, axis=1)


def _allocate(capacity: int, channels: int) -> np.ndarray:
    try:
        return np.empty((capacity, channels), dtype=np.float32)
    except (MemoryError, ValueError) as e:
        raise AllocationError(
            f"Could not allocate buffer for {capacity} frames x {channels} channels"
        ) from e


def _resample(signal: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Single-shot resample of a (frames, channels) float buffer."""
    import librosa

    try:
        resampled = librosa.resample(signal.T, orig_sr=source_rate, target_sr=target_rate)
    except MemoryError as e:
        raise AllocationError(f"Out of memory resampling {len(signal)} frames") from e
    except Exception as e:
        raise ConversionError(f"Resampling {source_rate} Hz -> {target_rate} Hz failed: {e}") from e

    return np.ascontiguousarray(resampled.T, dtype=np.float32)


def _encode(output: np.ndarray, encoding: str) -> np.ndarray:
    if encoding == "int16":
        scaled = np.round(np.clip(output, -1.0, 1.0) * (INT16_SCALE - 1))
        return scaled.astype(np.int16)
    return output.astype(np.float32, copy=False)


def _shape_output(frames: np.ndarray, target: AudioFormat) -> np.ndarray:
    if target.channels == 1:
        return frames.reshape(-1)
    return frames
