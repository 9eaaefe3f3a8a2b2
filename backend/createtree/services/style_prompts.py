"""Style lookup table and prompt composition for image transforms.

Style keys are matched exactly against ``STYLE_PROMPTS``; anything else is
treated as a free-text style name and used as its own description.
"""
from __future__ import annotations

import re

STYLE_PROMPTS: dict[str, str] = {
    "watercolor": "Transform this image into a beautiful watercolor painting with soft, flowing colors and gentle brush strokes",
    "sketch": "Convert this image into a detailed pencil sketch with elegant lines and shading",
    "cartoon": "Transform this image into a charming cartoon style with bold outlines and vibrant colors",
    "oil": "Convert this image into a classic oil painting style with rich textures and depth",
    "fantasy": "Transform this image into a magical fantasy art style with ethereal lighting and dreamlike qualities",
    "storybook": "Convert this image into a sweet children's storybook illustration style with gentle colors and charming details",
    "ghibli": (
        "Transform this image into a Studio Ghibli anime style with delicate hand-drawn details, "
        "soft expressions, pastel color palette, dreamy background elements, gentle lighting, and "
        "the whimsical charming aesthetic that Studio Ghibli is known for. The image should be "
        "gentle and magical."
    ),
    "disney": "Transform this image into a Disney animation style with expressive characters, vibrant colors, and enchanting details",
    "korean_webtoon": "Transform this image into a Korean webtoon style with clean lines, pastel colors, and expressive characters",
    "fairytale": "Transform this image into a fairytale illustration with magical elements, dreamy atmosphere, and storybook aesthetics",
}

# Defaults for ``{{variable}}`` placeholders in admin-authored templates
TEMPLATE_DEFAULTS: dict[str, str] = {
    "object": "pregnant woman",
    "mood": "happy",
    "color": "vibrant",
    "theme": "maternity",
    "setting": "portrait",
}

_TEMPLATE_VAR = re.compile(r"\{\{(\w+)\}\}")

IDENTITY_CLAUSE = (
    "Preserve the exact facial features, expression, and identity of the person in the photo."
)


def resolve_style_description(style: str) -> str:
    """Map a style key to its description; unknown keys describe themselves."""
    return STYLE_PROMPTS.get(style, style)


def render_template(template: str, style: str) -> str:
    """Substitute ``{{variable}}`` placeholders; unknown names are kept as-is."""
    values = dict(TEMPLATE_DEFAULTS, style=style)
    return _TEMPLATE_VAR.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def compose_edit_prompt(style: str, custom_prompt: str | None = None) -> str:
    """Prompt for the image-conditioned (edit) model."""
    if custom_prompt and custom_prompt.strip():
        return render_template(custom_prompt.strip(), style)
    description = resolve_style_description(style)
    if style not in STYLE_PROMPTS:
        description = f"Transform this image into {description} style"
    return f"{description}. {IDENTITY_CLAUSE}"


def compose_generation_prompt(style: str, custom_prompt: str | None = None) -> str:
    """Prompt for the text-only fallback model.

    The fallback cannot see the photo, so the default templates describe
    the expected subject explicitly.
    """
    if custom_prompt and custom_prompt.strip():
        return render_template(custom_prompt.strip(), style)

    lowered = style.lower()
    description = resolve_style_description(style)
    if "goddess" in lowered:
        return (
            "Create a beautiful maternal goddess portrait with:\n"
            "1. A pregnant woman with a serene, radiant expression\n"
            "2. Divine, goddess-like appearance with radiant aura or wings\n"
            "3. Elegant, flowing gold or white maternity dress\n"
            "4. Warm, ethereal lighting with soft glow\n"
            "5. Professional studio quality"
        )
    if "fairytale" in lowered or "storybook" in lowered:
        return (
            "Create a fairytale-style illustration of a pregnant woman with:\n"
            f"1. {description}\n"
            "2. Soft, dreamy colors and magical elements\n"
            "3. Fantasy setting with beautiful backdrop"
        )
    return (
        f"Create a professional maternity portrait in {style} style featuring:\n"
        f"1. {description}\n"
        f"2. Professional studio lighting with {style} artistic aesthetics\n"
        "3. Clean, beautiful composition highlighting pregnancy"
    )
