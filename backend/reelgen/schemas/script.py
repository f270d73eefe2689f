"""Pydantic schemas for the structured video script produced by the scripting stage.

The script drives every later stage: image prompts feed imaging, the
voiceover feeds narration, and scene timing/on-screen text feed code
generation.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to comma-separated string.

    Some LLM providers return arrays for fields declared as string in the
    JSON schema. This validator normalises them so Pydantic validation
    succeeds regardless of provider quirks.
    """
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]

SCENE_MOODS = (
    "intrigue",
    "frustration",
    "excitement",
    "authority",
    "urgency",
    "celebration",
    "educational",
)


class OnScreenText(BaseModel):
    """Text rendered on screen during a scene."""

    headline: Optional[CoercedStr] = Field(default=None, description="Main text on screen")
    subhead: Optional[CoercedStr] = Field(default=None, description="Secondary text")
    bullet_points: list[str] = Field(default_factory=list, description="Optional bullet points")
    emphasis: list[str] = Field(default_factory=list, description="Words to emphasize/animate")


class ScriptScene(BaseModel):
    """One scene of the video with its timing, narration and visual direction."""

    id: str = Field(description="Unique scene id such as 'hook', 'problem', 'solution', 'proof', 'cta'")
    duration: float = Field(gt=0, description="Scene length in seconds")
    voiceover: Optional[CoercedStr] = Field(default=None, description="Narration for this scene")
    on_screen_text: OnScreenText = Field(default_factory=OnScreenText)
    visual_direction: CoercedStr = Field(description="What the scene should look like visually")
    mood: CoercedStr = Field(description=f"One of: {', '.join(SCENE_MOODS)}")


class ColorPalette(BaseModel):
    """Hex colors chosen for the topic and mood."""

    primary: str
    secondary: str
    accent: str
    background: str = "#0a0a0a"


class VideoScriptSchema(BaseModel):
    """Complete script output from the scripting LLM."""

    total_duration: float = Field(gt=0, description="Total video length in seconds")
    voiceover_script: CoercedStr = Field(description="Full narration text, all scenes combined")
    scenes: list[ScriptScene] = Field(min_length=1)
    color_palette: ColorPalette
    image_prompts: list[str] = Field(
        default_factory=list,
        description="One image generation prompt per scene that needs an image",
    )
