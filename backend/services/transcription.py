"""Transcript file parsing and validation.

Uploaded transcripts arrive as raw text in one of four formats. The format is
taken from the file extension, or sniffed from the content when the extension
is unknown.

Usage:
    >>> parsed = parse_transcription("episode.srt", content)
    >>> report = validate_transcription(parsed, video_duration=312.0)
    >>> if not report.is_valid:
    ...     raise TranscriptionParseError("; ".join(report.errors))
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from canvas.errors import CanvasValidationError
from canvas.types import ParsedTranscription, TranscriptSegment

logger = structlog.get_logger(__name__)

DEFAULT_SEGMENT_SECONDS = 5.0
MAX_TEXT_LENGTH = 1_000_000
LONG_SEGMENT_CHARS = 200
DURATION_TOLERANCE_SECONDS = 5.0

SRT_TIMESTAMP = re.compile(r"(\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2},\d{3})")
VTT_TIMESTAMP = re.compile(r"(\d{2}:\d{2}:\d{2}\.\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2}\.\d{3})")
TXT_TIMESTAMP = re.compile(r"[\[(](\d{2}:\d{2}:\d{2})[\])]\s*(.*)")


class TranscriptionParseError(CanvasValidationError):
    """The transcript file could not be parsed."""


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# -----------------------------------------------------------------------------
# Time helpers
# -----------------------------------------------------------------------------


def _clock_to_seconds(value: str, fraction_sep: str | None = None) -> float:
    millis = 0
    if fraction_sep is not None:
        value, _, frac = value.partition(fraction_sep)
        millis = int(frac or 0)
    parts = [int(p) for p in value.split(":")]
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + part
    return seconds + millis / 1000


def format_duration(seconds: float) -> str:
    """Format seconds as ``m:ss`` or ``h:mm:ss``."""
    total = int(seconds)
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def _joined(segments: list[TranscriptSegment]) -> str:
    return " ".join(s.text for s in segments)


# -----------------------------------------------------------------------------
# Format parsers
# -----------------------------------------------------------------------------


def parse_srt(content: str) -> ParsedTranscription:
    segments: list[TranscriptSegment] = []
    for block in re.split(r"\n\s*\n", content.strip()):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue
        match = SRT_TIMESTAMP.search(lines[1])
        if not match:
            continue
        segments.append(
            TranscriptSegment(
                start=_clock_to_seconds(match.group(1), ","),
                end=_clock_to_seconds(match.group(2), ","),
                text=" ".join(lines[2:]).strip(),
            )
        )
    return ParsedTranscription(segments=segments, full_text=_joined(segments), format="srt")


def parse_vtt(content: str) -> ParsedTranscription:
    segments: list[TranscriptSegment] = []
    lines = content.split("\n")
    i = 0
    # Skip the WEBVTT header and any notes before the first cue
    while i < len(lines) and "-->" not in lines[i]:
        i += 1

    while i < len(lines):
        match = VTT_TIMESTAMP.search(lines[i]) if "-->" in lines[i] else None
        if match:
            text_lines: list[str] = []
            i += 1
            while i < len(lines) and lines[i].strip() and "-->" not in lines[i]:
                text_lines.append(lines[i].strip())
                i += 1
            if text_lines:
                segments.append(
                    TranscriptSegment(
                        start=_clock_to_seconds(match.group(1), "."),
                        end=_clock_to_seconds(match.group(2), "."),
                        text=" ".join(text_lines),
                    )
                )
            continue
        i += 1
    return ParsedTranscription(segments=segments, full_text=_joined(segments), format="vtt")


def parse_txt(content: str) -> ParsedTranscription:
    """Parse plain text, honouring optional ``[hh:mm:ss]`` line prefixes.

    Untimed lines are appended to the previous segment. A timed line closes
    the previous segment at its own start time.
    """
    segments: list[TranscriptSegment] = []
    for raw in content.strip().split("\n"):
        line = raw.strip()
        if not line:
            continue
        match = TXT_TIMESTAMP.match(line)
        if match:
            start = _clock_to_seconds(match.group(1))
            if segments:
                segments[-1].end = start
            segments.append(
                TranscriptSegment(
                    start=start,
                    end=start + DEFAULT_SEGMENT_SECONDS,
                    text=match.group(2).strip(),
                )
            )
        elif segments:
            segments[-1].text = f"{segments[-1].text} {line}"
        else:
            segments.append(TranscriptSegment(start=0, end=DEFAULT_SEGMENT_SECONDS, text=line))
    return ParsedTranscription(segments=segments, full_text=_joined(segments), format="txt")


def _json_segments(data: Any) -> list[TranscriptSegment]:
    if isinstance(data, list):
        segments = []
        for item in data:
            if not isinstance(item, dict):
                continue
            start = item.get("start") or item.get("startTime") or 0
            end = item.get("end") or item.get("endTime") or start + DEFAULT_SEGMENT_SECONDS
            text = item.get("text") or item.get("content") or item.get("transcript") or ""
            segments.append(TranscriptSegment(start=start, end=end, text=text))
        return segments
    if isinstance(data, dict):
        if "segments" in data:
            return _json_segments(data["segments"])
        if "transcript" in data:
            return [TranscriptSegment(start=0, end=60, text=str(data["transcript"]))]
    return []


def parse_json(content: str) -> ParsedTranscription:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise TranscriptionParseError("Invalid JSON format") from e
    segments = _json_segments(data)
    return ParsedTranscription(segments=segments, full_text=_joined(segments), format="json")


_PARSERS = {
    "srt": parse_srt,
    "vtt": parse_vtt,
    "webvtt": parse_vtt,
    "txt": parse_txt,
    "json": parse_json,
}


def _sniff(content: str) -> str:
    stripped = content.strip()
    if stripped.startswith("WEBVTT"):
        return "vtt"
    if "-->" in stripped:
        return "srt"
    if stripped.startswith(("{", "[")):
        return "json"
    return "txt"


def parse_transcription(file_name: str, content: str) -> ParsedTranscription:
    """Parse a transcript file by extension, falling back to content sniffing.

    Raises:
        TranscriptionParseError: If the content does not match its format.
    """
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    fmt = extension if extension in _PARSERS else _sniff(content)
    try:
        parsed = _PARSERS[fmt](content)
    except TranscriptionParseError as e:
        raise TranscriptionParseError(f"Failed to parse {fmt.upper()}: {e}") from e
    except (ValueError, TypeError) as e:
        raise TranscriptionParseError(f"Failed to parse {fmt.upper()}: {e}") from e

    logger.debug(
        "transcription_parsed",
        file_name=file_name,
        format=parsed.format,
        segment_count=len(parsed.segments),
    )
    return parsed


def validate_transcription(
    parsed: ParsedTranscription,
    video_duration: float | None = None,
) -> ValidationReport:
    """Check a parsed transcript for problems.

    Args:
        parsed: The parsed transcript.
        video_duration: Length of the owning video, when known.

    Returns:
        A report; any error makes the transcript unusable, warnings are
        informational.
    """
    report = ValidationReport()
    if not parsed.segments or not parsed.full_text.strip():
        report.errors.append("Transcription file is empty")

    if len(parsed.full_text) > MAX_TEXT_LENGTH:
        report.warnings.append("Transcription is very large (>1MB of text)")

    if video_duration and parsed.segments:
        if parsed.segments[-1].end > video_duration + DURATION_TOLERANCE_SECONDS:
            report.warnings.append(
                f"Timestamps exceed video duration ({format_duration(video_duration)})"
            )

    for previous, current in zip(parsed.segments, parsed.segments[1:]):
        if current.start < previous.end:
            report.warnings.append("Some subtitles have overlapping timestamps")
            break

    long_segments = sum(1 for s in parsed.segments if len(s.text) > LONG_SEGMENT_CHARS)
    if long_segments:
        report.warnings.append(
            f"{long_segments} subtitle(s) are very long (>{LONG_SEGMENT_CHARS} chars)"
        )
    return report
