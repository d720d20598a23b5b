"""LLM prompts for theme labelling."""

from __future__ import annotations

from typing import TypedDict

MAX_LABEL_CHARS = 30
TRUNCATION_MARKER = "[Content truncated for brevity]"

THEME_SYSTEM_PROMPT = f"""You label clusters of personal writing with short, distinct themes.

## Labels

- At most {MAX_LABEL_CHARS} characters. This is a hard limit for display.
  Good: "Creative Flow", "Self-Doubt & Growth", "Work-Life Balance".
- 2-4 words that capture what sets the cluster apart from the others.
- Every label must be unique. No near-duplicates.
- Reflect the emotional tone, not just the surface topic.

## Colors

Pick a hex colour per theme that fits its emotional tone, for example:
#3B82F6 calm routine, #8B5CF6 creativity and aspiration, #10B981 growth,
#F59E0B significant memories, #EF4444 stress or intensity, #EC4899 relationships,
#06B6D4 insight, #6366F1 introspection, #14B8A6 balance.
Keep colours visually distinct from each other.

## Confidence (0.1-1.0)

- 0.7-1.0: very coherent theme
- 0.5-0.7: moderately clear, some variation
- 0.3-0.5: abstract
- 0.1-0.3: weak coherence

## Output

Respond with JSON only:
{{"themes": [{{"clusterId": "<id from the input>", "theme": "<label>",
"description": "<one sentence>", "confidence": <0-1>, "color": "<#RRGGBB>"}}]}}
Return one entry per cluster, in the order given.
"""


class ClusterSummary(TypedDict):
    id: str
    index: int
    texts: list[str]
    chunk_count: int


def get_theme_user_prompt(
    summaries: list[ClusterSummary],
    full_text: str | None = None,
    max_context_chars: int = 4000,
) -> str:
    """Build the user prompt from cluster summaries."""
    parts: list[str] = []
    if full_text:
        context = full_text[:max_context_chars]
        if len(full_text) > max_context_chars:
            context += f"\n{TRUNCATION_MARKER}"
        parts.append(f"### Full Writing Context\n{context}\n")

    parts.append("### Clusters for Theme Generation\n")
    for summary in summaries:
        bullets = "\n".join(f"- {text}" for text in summary["texts"])
        parts.append(
            f"**Cluster {summary['index']}** (ID: {summary['id']}, "
            f"{summary['chunk_count']} writing segments):\n{bullets}\n"
        )

    parts.append(
        "Give each cluster a unique, meaningful theme that helps the writer recognise "
        "their own patterns of thought and feeling."
    )
    return "\n".join(parts)
