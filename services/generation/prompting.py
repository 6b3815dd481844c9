"""
Motion instruction composition.

Turns a scene prompt plus an optional motion tag into the instruction text
sent to an image-to-video provider. Admin settings may supply their own
motion phrase table and a template with {motion} / {prompt} placeholders.
"""

from typing import Mapping, Optional

DEFAULT_MOTION = "Cinematic Slow Motion"

# Motion tags understood by every video provider
MOTION_TYPES = ("auto", "zoom_in", "zoom_out", "pan_left", "pan_right", "static", DEFAULT_MOTION)


def motion_phrase(
    motion_hint: Optional[str],
    phrases: Mapping[str, str],
    motion_rules: Optional[Mapping[str, str]] = None,
) -> str:
    """Resolve a motion tag to an instruction phrase ("" for auto/unknown)."""
    if not motion_hint or motion_hint == "auto":
        return ""
    if motion_rules and motion_rules.get(motion_hint):
        return motion_rules[motion_hint]
    return phrases.get(motion_hint, "")


def compose_instruction(
    prompt: str,
    motion_hint: Optional[str],
    phrases: Mapping[str, str],
    motion_rules: Optional[Mapping[str, str]] = None,
    template: Optional[str] = None,
) -> str:
    """
    Build the final instruction text.

    Without a template the motion phrase is prefixed: "<motion>. <prompt>".
    A template only gets placeholder substitution, nothing else is validated.
    """
    motion = motion_phrase(motion_hint, phrases, motion_rules)

    if template:
        return template.replace("{motion}", motion).replace("{prompt}", prompt).strip()

    if motion:
        return f"{motion}. {prompt}"
    return prompt
