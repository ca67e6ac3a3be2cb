"""
Reading export files from disk.

JSON Lines files (.jsonl / .ndjson) are read in fixed-size chunks with a
carry-over buffer for the partial last line, so multi-hundred-megabyte
ListenBrainz dumps never need a second full copy in memory. Lines that fail
to decode are skipped and counted.
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterator, List, Tuple

from ..errors import InvalidJSONError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024
JSONL_EXTENSIONS = ('.jsonl', '.ndjson')


@dataclass
class FilePayload:
    data: Any
    skipped_lines: int = 0


def is_jsonl(filename: str) -> bool:
    return (filename or "").lower().endswith(JSONL_EXTENSIONS)


def _decode_lines(lines: List[str]) -> Tuple[List[Any], int]:
    records = []
    skipped = 0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as e:
            skipped += 1
            logger.debug(f"Skipping malformed JSONL line ({e.msg}): {line[:80]}")
    return records, skipped


def _iter_chunks(handle, chunk_size: int) -> Iterator[str]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            return
        yield chunk


def read_jsonl(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> FilePayload:
    records: List[Any] = []
    skipped = 0
    buffer = ""

    with open(path, 'r', encoding='utf-8-sig') as handle:
        for chunk in _iter_chunks(handle, chunk_size):
            buffer += chunk
            lines = buffer.split('\n')
            buffer = lines.pop()
            decoded, bad = _decode_lines(lines)
            records.extend(decoded)
            skipped += bad

    decoded, bad = _decode_lines([buffer])
    records.extend(decoded)
    skipped += bad

    if skipped:
        logger.warning(f"Skipped {skipped:,} malformed lines in {os.path.basename(path)}")
    return FilePayload(data=records, skipped_lines=skipped)


def loads_jsonl(text: str) -> FilePayload:
    records, skipped = _decode_lines(text.split('\n'))
    if skipped:
        logger.warning(f"Skipped {skipped:,} malformed JSONL lines")
    return FilePayload(data=records, skipped_lines=skipped)


def loads_json(text: str, filename: str = "") -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        label = filename or "input"
        raise InvalidJSONError(
            f"{label} is not valid JSON (line {e.lineno}, column {e.colno}: {e.msg})"
        ) from e


def read_payload(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> FilePayload:
    """
    Load an export file into Python objects.

    Raises:
        InvalidJSONError: a non-JSONL file does not parse as JSON
        OSError: the file cannot be read
    """
    if is_jsonl(path):
        return read_jsonl(path, chunk_size)

    with open(path, 'r', encoding='utf-8-sig') as handle:
        text = handle.read()
    return FilePayload(data=loads_json(text, os.path.basename(path)))
