"""Newline-delimited JSON codec for the beads record file.

Key design choices:

* **Per-line decoding** -- every non-blank line is decoded on its own
  (UTF-8 and JSON).  A line that fails is recorded in
  ``ParseResult.skipped`` and logged; ``parse()`` never raises.
* **One timestamp form on write** -- ``serialize()`` always emits
  ``YYYY-MM-DDTHH:MM:SS.ffffffZ`` so that ``parse(serialize(rs)) == rs``.
* **Pass-through lines** -- ``serialize()`` can append raw lines verbatim,
  which lets a caller rewrite the file without dropping lines it could not
  parse.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from pydantic import ValidationError

from beads_sync.sync.models import Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedLine:
    """A line of the record file that could not be decoded.

    Attributes:
        line_number: 1-based line number in the input.
        reason: Short description of the decoding failure.
        raw: The undecoded line bytes, without the trailing newline.
    """

    line_number: int
    reason: str
    raw: bytes


@dataclass(frozen=True)
class ParseResult:
    """Records decoded from a file plus the lines that were skipped."""

    records: list[Record] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _decode_line(line: bytes) -> Record:
    text = line.decode("utf-8")
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError(
            f"expected a JSON object, got {type(payload).__name__}"
        )
    return Record.model_validate(payload)


def parse(data: bytes) -> ParseResult:
    """Decode newline-delimited JSON records.

    Args:
        data: Raw file contents.

    Returns:
        A ``ParseResult``.  Blank lines are ignored; undecodable lines are
        reported in ``skipped`` and never abort the call.
    """
    records: list[Record] = []
    skipped: list[SkippedLine] = []

    for line_number, line in enumerate(data.split(b"\n"), 1):
        line = line.rstrip(b"\r")
        if not line.strip():
            continue
        try:
            records.append(_decode_line(line))
        except (
            UnicodeDecodeError,
            ValueError,
            ValidationError,
            RecursionError,
        ) as exc:
            reason = _short_reason(exc)
            logger.warning(
                "Skipping malformed record on line %d: %s",
                line_number,
                reason,
            )
            skipped.append(SkippedLine(line_number, reason, line))

    if skipped:
        logger.warning(
            "Parsed %d records, skipped %d malformed lines",
            len(records),
            len(skipped),
        )
    return ParseResult(records=records, skipped=skipped)


def parse_records(data: bytes) -> list[Record]:
    """Return only the records from ``parse(data)``."""
    return parse(data).records


def serialize(
    records: Sequence[Record],
    extra_lines: Iterable[bytes] = (),
) -> bytes:
    """Encode records as compact newline-delimited JSON.

    Args:
        records: Records to encode, written in the given order.
        extra_lines: Raw lines appended verbatim after the records.

    Returns:
        UTF-8 bytes, one object per line, newline terminated.  Empty input
        yields ``b""``.
    """
    lines = [
        json.dumps(
            record.to_json_dict(), ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8")
        for record in records
    ]
    lines.extend(extra_lines)
    if not lines:
        return b""
    return b"\n".join(lines) + b"\n"


def _short_reason(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return f"{location}: {first.get('msg', 'invalid value')}"
    return str(exc)
