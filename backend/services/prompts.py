"""Prompt templates for content generation.

This module contains the prompt text sent to the generation backends:
- SYSTEM_PROMPTS: One system prompt per agent type
- THUMBNAIL_CONCEPT_PROMPT: Vision prompt that turns frames into an image brief
- REFINE_TEXT_PROMPT: Chat-driven edits of an existing draft
- REFINE_THUMBNAIL_PROMPT: Chat-driven edits of an existing thumbnail
"""

from canvas.types import AgentType

SYSTEM_PROMPTS: dict[AgentType, str] = {
    AgentType.TITLE: """\
You write YouTube video titles for the channel described below.

Rules:
- At most 70 characters.
- Front-load the hook; no clickbait that the video does not pay off.
- Match the channel tone.

Return only the title, without quotes.""",
    AgentType.DESCRIPTION: """\
You write YouTube video descriptions for the channel described below.

Rules:
- Open with two sentences that summarize the video and make people click.
- Follow with a short bullet list of what viewers will learn or see.
- Add timestamps only if segment times are provided.
- End with 3-5 relevant hashtags.

Return only the description text.""",
    AgentType.TWEETS: """\
You write social posts that promote a new video for the channel described below.

Rules:
- Write a thread of 3 to 5 posts, each under 280 characters.
- The first post must stand on its own.
- Separate posts with a blank line and number them like "1/".

Return only the posts.""",
    AgentType.THUMBNAIL: """\
You are an art director designing YouTube thumbnails for the channel described below.""",
}

THUMBNAIL_CONCEPT_PROMPT = """\
Look at the attached frames from the video and design a thumbnail.

Respond with a JSON object with two keys:
- "concept": two or three sentences describing the thumbnail for the creator.
- "image_prompt": a detailed prompt for an image model (composition, subject,
  expression, colors, large readable text of at most four words).
{additional_context}"""

REFINE_TEXT_PROMPT = """\
The creator wants to change the current {agent_type}.

Current version:
{current_draft}

Creator's request:
{user_message}

Respond with a JSON object with two keys:
- "response": one or two friendly sentences telling the creator what you changed.
- "updated_content": the complete new {agent_type}."""

REFINE_THUMBNAIL_PROMPT = """\
The attached image is the current thumbnail. The creator asks:
{user_message}

Respond with a JSON object with two keys:
- "concept": two or three sentences describing the revised thumbnail.
- "image_prompt": a detailed prompt for an image model that applies the change
  while keeping what already works."""


def compose_prompt_sections(*sections: str) -> str:
    """Join non-empty prompt sections with blank lines."""
    return "\n\n".join(section.strip() for section in sections if section and section.strip())


def build_profile_section(profile: dict[str, str]) -> str:
    lines = ["## Channel"]
    lines += [f"- {key}: {value}" for key, value in profile.items() if value]
    return "\n".join(lines)


def build_context_section(
    video: dict[str, object],
    connected_outputs: list[dict[str, str]],
    mood_references: list[dict[str, str | None]],
) -> str:
    """Describe the upstream material available to an agent."""
    parts: list[str] = [f"## Video\nTitle: {video.get('title') or 'Untitled'}"]

    if video.get("duration"):
        parts.append(f"Duration: {video['duration']} seconds")
    if video.get("transcription"):
        parts.append(f"## Transcript\n{video['transcription']}")

    manual = video.get("manual_transcriptions") or []
    for item in manual:  # type: ignore[union-attr]
        parts.append(
            f"## Transcript from {item['file_name']} ({item['format']})\n{item['text']}"
        )

    if connected_outputs:
        lines = [f"- {o['type']}: {o['content']}" for o in connected_outputs]
        parts.append("## Other content for this video\n" + "\n".join(lines))

    if mood_references:
        lines = [
            f"- {r.get('type')}: {r.get('title') or r.get('url')}" for r in mood_references
        ]
        parts.append("## Style references\n" + "\n".join(lines))

    return "\n".join(parts)
