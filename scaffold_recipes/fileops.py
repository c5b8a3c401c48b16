"""Small file helpers shared by the writing tools."""

from pathlib import Path

from .errors import ToolExecutionError


def write_text(path: Path, content: str) -> None:
    """Write a file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def inject_text(
    content: str,
    text: str,
    after: str | None = None,
    before: str | None = None,
    at: str | None = None,
) -> str:
    """Insert ``text`` into ``content``.

    ``after``/``before`` name a literal anchor (first occurrence); ``at:
    start`` prepends; anything else appends. Inserted text is joined with a
    newline on the anchor side.

    Raises:
        ToolExecutionError: If the anchor is not present
    """
    if after:
        idx = content.find(after)
        if idx == -1:
            raise ToolExecutionError(f"Anchor not found for 'after': {after!r}")
        insert_at = idx + len(after)
        return content[:insert_at] + "\n" + text + content[insert_at:]
    if before:
        idx = content.find(before)
        if idx == -1:
            raise ToolExecutionError(f"Anchor not found for 'before': {before!r}")
        return content[:idx] + text + "\n" + content[idx:]
    if at == "start":
        return text + "\n" + content
    if content and not content.endswith("\n"):
        return content + "\n" + text
    return content + text
