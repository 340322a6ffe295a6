"""Split long digests into messages that fit a chat platform's size limit."""

from __future__ import annotations

from typing import List


DISCORD_MAX_MESSAGE_LENGTH = 2000
TELEGRAM_MAX_MESSAGE_LENGTH = 4096


def _split_long_line(line: str, max_length: int) -> List[str]:
    parts = [line[i : i + max_length] for i in range(0, len(line), max_length)]
    return [p for p in parts if p.strip()]


def split_message(content: str, max_length: int = DISCORD_MAX_MESSAGE_LENGTH) -> List[str]:
    """Split on line boundaries; a single line longer than `max_length` is hard-split.

    Every chunk is at most `max_length` characters. Chunks are trimmed, so joining
    them with newlines reproduces the input modulo surrounding whitespace.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")
    if len(content) <= max_length:
        return [content]

    chunks: List[str] = []
    current = ""
    for line in content.split("\n"):
        if current and len(current) + len(line) + 1 <= max_length:
            current = f"{current}\n{line}"
            continue
        if not current and len(line) <= max_length:
            current = line
            continue

        if current.strip():
            chunks.append(current.strip())
        current = ""
        if len(line) > max_length:
            pieces = _split_long_line(line, max_length)
            chunks.extend(pieces[:-1])
            current = pieces[-1] if pieces else ""
        else:
            current = line

    if current.strip():
        chunks.append(current.strip())
    return chunks
