"""
Citation markers in model output.

The model is asked to cite as `[CITE:<page>:<chunk_id>:<quoted text>]`.
Markers that point at a chunk of this turn's context become numbered
references (`[1]`, `[2]`, ...) plus Citation records; any other marker is
left in the text untouched.
"""
import re
from typing import List, Sequence, Tuple

from .data_models import Citation, SearchResult

CITATION_PATTERN = re.compile(r'\[CITE:(\d+):([^:\]]+):([^\]]*)\]')

CITATION_INSTRUCTIONS = """Citations:
- After every statement that is based on one of the excerpts above, add a citation marker in exactly this form: [CITE:page_number:chunk_id:quoted_text]
- page_number and chunk_id must be copied from the excerpt header, e.g. [Page 3, Chunk 9f2c] -> [CITE:3:9f2c:...]
- quoted_text is a short exact quote from that excerpt and must not contain the ']' character
- Do not cite anything that is not one of the excerpts above"""


def format_context(chunks: Sequence[SearchResult]) -> str:
    """Render context chunks as `[Page P, Chunk ID]` blocks separated by rules."""
    blocks = [f"[Page {c.page_number}, Chunk {c.id}]\n{c.content}" for c in chunks]
    return "\n\n---\n\n".join(blocks)


def rewrite_citations(text: str, context_chunks: Sequence[SearchResult]) -> Tuple[str, List[Citation]]:
    """
    Replace known citation markers with numbered references.

    Args:
        text: Raw model output
        context_chunks: Chunks that were sent to the model for this answer

    Returns:
        (rewritten text, citations in order of appearance)
    """
    by_id = {chunk.id: chunk for chunk in context_chunks}
    citations: List[Citation] = []

    def _replace(match: re.Match) -> str:
        chunk = by_id.get(match.group(2).strip())
        if chunk is None:
            return match.group(0)
        number = len(citations) + 1
        citations.append(Citation(
            id=f"cite_{number}",
            page_number=chunk.page_number,
            chunk_id=chunk.id,
            text=match.group(3).strip(),
        ))
        return f"[{number}]"

    return CITATION_PATTERN.sub(_replace, text), citations
