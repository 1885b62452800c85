"""Parsing of raw GitLab job logs into display lines."""

from __future__ import annotations

import re
from typing import NamedTuple

__all__ = ["LogLine", "format_duration", "format_log_text", "parse_job_log", "strip_ansi"]

# Runner timestamp prefix: "2024-01-15T10:30:00.123456Z 00O " (time kept, stream tag dropped)
_TIMESTAMP_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T(?P<time>\d{2}:\d{2}:\d{2})\S*Z \S+ ?")
_SECTION_MARKER = re.compile(
    r"section_(?P<kind>start|end):(?P<ts>\d+):(?P<name>[^\r\n\x1b\[]+)"
    r"(?:\[[^\]]*\])?\r?(?:\x1b\[0K)?"
)
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
# Erase-line and bare reset codes carry no styling
_NOISE_CODES = ("\x1b[0K", "\x1b[0;m")


class LogLine(NamedTuple):
    """A single displayable log line."""

    timestamp: str | None
    # Still contains SGR color codes; render with rich.text.Text.from_ansi
    content: str
    # MM:SS of the collapsible section this line closes, if any
    duration: str | None


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


def format_duration(seconds: int) -> str:
    mins, secs = divmod(max(0, seconds), 60)
    return f"{mins:02d}:{secs:02d}"


def _clean(text: str) -> str:
    for code in _NOISE_CODES:
        text = text.replace(code, "")
    return text


def parse_job_log(raw: str) -> list[LogLine]:
    """Parse a raw job trace.

    Section markers are removed; a section's duration is attached to the last
    line emitted inside it. Lines that are empty once ANSI codes are stripped
    are dropped.
    """
    result = list[LogLine]()
    section_starts = dict[str, int]()

    for raw_line in raw.split("\n"):
        line = raw_line.rstrip("\r")
        timestamp: str | None = None
        if match := _TIMESTAMP_PREFIX.match(line):
            timestamp = match.group("time")
            line = line[match.end() :]

        text_parts = list[str]()
        pos = 0
        for marker in _SECTION_MARKER.finditer(line):
            text_parts.append(line[pos : marker.start()])
            pos = marker.end()
            name = marker.group("name")
            ts = int(marker.group("ts"))
            if marker.group("kind") == "start":
                section_starts[name] = ts
            elif (start := section_starts.pop(name, None)) is not None and result:
                last = result[-1]
                result[-1] = last._replace(duration=format_duration(ts - start))
        text_parts.append(line[pos:])

        content = _clean("".join(text_parts))
        if not strip_ansi(content).strip():
            continue
        result.append(LogLine(timestamp=timestamp, content=content, duration=None))

    return result


def format_log_text(lines: list[LogLine]) -> str:
    """Render lines as numbered plain text (no ANSI codes)."""
    width = len(str(max(len(lines), 1)))
    rendered = list[str]()
    for idx, line in enumerate(lines, 1):
        ts = line.timestamp or " " * 8
        text = f"{idx:>{width}} {ts}  {strip_ansi(line.content)}"
        if line.duration:
            text = f"{text} {line.duration}"
        rendered.append(text)
    return "\n".join(rendered)
