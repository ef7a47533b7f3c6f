"""Default prompts and request payload rendering."""

from xml.sax.saxutils import quoteattr

from .models import Chunk, ChunkPart, ChunkResult

DEFAULT_SYSTEM_PROMPT = """You are a thoughtful assistant that reads a person's personal notes and surfaces \
what matters in them. Notes are provided inside <note> tags with their vault path. A note that was too long \
for one request arrives in several parts, marked with a part attribute.

Be concrete. Quote or reference the note path when you draw on a specific note. Do not invent facts \
that are not supported by the notes."""

DEFAULT_USER_PROMPT = """Review the notes below and extract:

1. **Open tasks**: action items that are not marked as done, grouped by project or theme
2. **Key insights**: recurring ideas, decisions and lessons worth remembering
3. **Questions**: unresolved questions the notes keep returning to

Format the answer as markdown with one heading per section. Skip a section if nothing fits it."""

DEFAULT_COMBINATION_PROMPT = """The notes were too large for a single request, so they were analyzed in \
sections. Each section's analysis is provided below inside <section> tags, in the original note order.

Merge them into one coherent markdown document with the same structure:
- Deduplicate tasks, insights and questions that appear in more than one section
- Keep grouping by project or theme, merging groups with the same subject
- Preserve note path references

Return only the merged document."""

DEFAULT_PROMPTS = {
    "system": DEFAULT_SYSTEM_PROMPT,
    "user": DEFAULT_USER_PROMPT,
    "combination": DEFAULT_COMBINATION_PROMPT,
}


def render_part(part: ChunkPart) -> str:
    """Wrap one note slice in a <note> element."""
    attrs = f"path={quoteattr(part.source_id)}"
    if part.part_count > 1:
        attrs += f' part="{part.part_index + 1}/{part.part_count}"'
    return f"<note {attrs}>\n{part.text}\n</note>\n"


def render_notes(parts: list[ChunkPart]) -> str:
    return "".join(render_part(part) for part in parts)


def build_chunk_prompt(user_prompt: str, chunk: Chunk, chunk_count: int) -> str:
    """User message for one chunk request."""
    header = user_prompt.strip()
    if chunk_count > 1:
        header += f"\n\nThis is section {chunk.index + 1} of {chunk_count} of the notes."
    return f"{header}\n\n<notes>\n{render_notes(chunk.parts)}</notes>"


def render_sections(results: list[ChunkResult]) -> str:
    return "".join(
        f'<section index="{result.index + 1}">\n{result.text.strip()}\n</section>\n' for result in results
    )


def build_combination_prompt(combination_prompt: str, results: list[ChunkResult]) -> str:
    """User message merging ordered chunk results."""
    return f"{combination_prompt.strip()}\n\n<sections>\n{render_sections(results)}</sections>"
