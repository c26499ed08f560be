"""Prompt construction and validation for room transformations.

Validates text prompts before sending them to the AI provider.
"""

MAX_PROMPT_LENGTH = 2000

_PRESERVE_ARCHITECTURE = (
    "Keep the camera angle, perspective, room proportions, walls, windows, doors, "
    "ceiling, floor and natural light exactly as in the original photo."
)

PROMPT_TEMPLATES: dict[str, str] = {
    "depersonalization": (
        "Remove all movable furniture, personal belongings, wall decorations, rugs and "
        "clutter from this room, leaving a clean empty space. Keep fixed lighting, "
        "curtains, built-in elements and finishes untouched. " + _PRESERVE_ARCHITECTURE
    ),
    "home_staging": (
        "Stage this room for a real-estate listing with tasteful, neutral, modern "
        "furniture and decor, realistically scaled and placed along the floor plane "
        "with consistent shadows. " + _PRESERVE_ARCHITECTURE
    ),
    "renovation": (
        "Show this room after a full renovation: refreshed wall paint, new flooring and "
        "updated fixtures in a contemporary style, photorealistic. " + _PRESERVE_ARCHITECTURE
    ),
}

TRANSFORMATION_TYPES = frozenset({*PROMPT_TEMPLATES, "custom"})


def validate_prompt(prompt: str) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt

    Returns:
        Validated prompt (surrounding whitespace stripped)

    Raises:
        ValueError: If prompt is empty, not a string, or exceeds the maximum length
    """
    if not isinstance(prompt, str):
        raise ValueError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValueError("Prompt cannot be empty or None")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt


def build_prompt(transformation_type: str, custom_prompt: str | None = None) -> str:
    """Build the provider prompt for a transformation.

    A custom prompt replaces the template for ``custom`` and is appended as an
    extra instruction for the other types.

    Raises:
        ValueError: Unknown transformation type, or ``custom`` without a prompt
    """
    if transformation_type not in TRANSFORMATION_TYPES:
        raise ValueError(f"Unknown transformation type: {transformation_type}")

    if transformation_type == "custom":
        if not custom_prompt:
            raise ValueError("A custom transformation requires a prompt")
        return validate_prompt(f"{custom_prompt.strip()} {_PRESERVE_ARCHITECTURE}")

    template = PROMPT_TEMPLATES[transformation_type]
    if custom_prompt and custom_prompt.strip():
        return validate_prompt(f"{template} Additional instructions: {custom_prompt.strip()}")
    return validate_prompt(template)
