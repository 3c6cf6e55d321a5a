"""
Prompts for the stages that call the generation service directly
(chapter drafting, summaries, character state sync), plus the JSON
extraction helper shared with the editorial agents.
"""

import json
from typing import Any, Dict, List, Optional

from novelforge.jobs.contracts import Chapter


CHAPTER_SYSTEM_PROMPT = """You are an accomplished novelist writing one chapter of a longer book.
Write vivid, emotionally grounded prose in a consistent voice. Stay faithful to the
story bible and scene cards you are given. Output only the chapter text, no headings
or commentary."""

SUMMARY_SYSTEM_PROMPT = """You are a professional story analyst. Your task is to create concise, \
informative chapter summaries for use as context in subsequent chapters."""

STATES_SYSTEM_PROMPT = """You are a continuity tracker for a novel. Your task is to update \
character states based on what happened in a chapter."""


def build_chapter_prompt(
    chapter: Chapter,
    story_bible: Optional[Dict[str, Any]],
    previous_summary: Optional[str]
) -> str:
    """Assemble the user prompt for drafting a chapter."""
    bible = story_bible or {}
    sections = [f"Write chapter {chapter.chapter_number}."]

    if bible.get("premise"):
        sections.append(f"PREMISE:\n{bible['premise']}")

    characters = bible.get("characters") or []
    if characters:
        lines = []
        for character in characters:
            line = f"- {character.get('name', 'Unnamed')}"
            if character.get("role"):
                line += f" ({character['role']})"
            state = character.get("currentState")
            if state:
                line += f": at {state.get('location', 'unknown')}, feeling {state.get('emotionalState', 'unknown')}"
            lines.append(line)
        sections.append("CHARACTERS:\n" + "\n".join(lines))

    if previous_summary:
        sections.append(f"PREVIOUSLY:\n{previous_summary}")

    if chapter.scene_cards:
        scenes = []
        for index, scene in enumerate(chapter.scene_cards, start=1):
            goal = scene.get("goal") or scene.get("description") or ""
            cast = ", ".join(scene.get("characters", []))
            scenes.append(f"{index}. {goal} [{cast}]" if cast else f"{index}. {goal}")
        sections.append("SCENES:\n" + "\n".join(scenes))

    sections.append("Write the full chapter now:")
    return "\n\n".join(sections)


def build_summary_prompt(content: str) -> str:
    return f"""Read the following chapter and create a summary in approximately 200 words.

Focus on:
1. Key plot events that happened
2. Character emotional states and changes
3. Important revelations or information learned
4. Relationships that changed
5. Setup for future events

Write the summary in past tense, third person.

CHAPTER CONTENT:
{content}

Write the summary now:"""


def build_states_prompt(content: str, character_names: List[str]) -> str:
    return f"""Read this chapter and update the states for the following characters: {', '.join(character_names)}

For each character, determine:
1. Their current location (where they are at the end of the chapter)
2. Their emotional state (how they're feeling)
3. Their current goals (what they want now)
4. Their current conflicts (what's opposing them)

CHAPTER CONTENT:
{content}

Respond with a JSON object with this structure:
{{
  "Character Name": {{
    "location": "where they are",
    "emotionalState": "how they feel",
    "goals": ["goal 1", "goal 2"],
    "conflicts": ["conflict 1", "conflict 2"]
  }}
}}

Output only valid JSON, no commentary:"""


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object out of a model response.

    Handles markdown code fences and leading/trailing prose.
    Raises ValueError when no object can be parsed.
    """
    text = text.strip()

    # Handle markdown code blocks
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object found in response")
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
