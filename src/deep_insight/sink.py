"""Writing generated insights into a note."""

import logging
import re
from pathlib import Path

from .models import FinalResult, InsertPosition

logger = logging.getLogger(__name__)

FRONTMATTER = re.compile(r"\A---\n.*?\n---\n", re.DOTALL)


def insert_text(content: str, text: str, position: InsertPosition, cursor_line: int | None = None) -> str:
    """Return content with text inserted at the given position.

    Top inserts after any YAML frontmatter. Cursor inserts before the given
    1-based line; without a line it behaves like bottom.
    """
    block = text.strip() + "\n"

    if position == "top":
        match = FRONTMATTER.match(content)
        head = match.group(0) if match else ""
        rest = content[len(head) :]
        return f"{head}{block}\n{rest}" if rest else f"{head}{block}"

    if position == "cursor" and cursor_line is not None:
        lines = content.splitlines(keepends=True)
        index = min(max(cursor_line - 1, 0), len(lines))
        before = "".join(lines[:index])
        if before and not before.endswith("\n"):
            before += "\n"
        return before + block + "".join(lines[index:])

    if position == "cursor":
        logger.warning("No cursor line given, inserting at the bottom")

    if not content:
        return block
    separator = "\n" if content.endswith("\n") else "\n\n"
    return f"{content}{separator}{block}"


class NoteSink:
    """Inserts a run's final text into a markdown file."""

    def __init__(self, path: Path, position: InsertPosition = "bottom", cursor_line: int | None = None):
        self.path = Path(path)
        self.position = position
        self.cursor_line = cursor_line

    def __call__(self, result: FinalResult):
        content = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(insert_text(content, result.text, self.position, self.cursor_line), encoding="utf-8")
        logger.info("Inserted %d characters into %s (%s)", len(result.text), self.path, self.position)
