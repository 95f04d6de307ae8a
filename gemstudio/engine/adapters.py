from typing import List, Tuple

from gemstudio.core.models import Angle, GenerationRequest
from gemstudio.generators.base import ContentPart
from gemstudio.utils.logger import get_logger

logger = get_logger("adapters")

DEFAULT_VIDEO_PROMPT = "Cinematic product showcase, elegant camera movement, sparkling lighting"
DEFAULT_CAPTION = "Check out our latest collection! #jewelry #luxury"
SOCIAL_LANGUAGES = ("Hebrew", "English", "Arabic", "Russian", "French", "Spanish")

# Fixed shot catalog, generated in this order for every photoshoot
ANGLES: Tuple[Angle, ...] = (
    Angle(
        label="Close-up",
        prompt_suffix="Extreme close-up macro shot focusing on the jewelry as worn, shallow depth of field",
    ),
    Angle(
        label="Full body",
        prompt_suffix="Full body fashion shot of the model, the jewelry clearly visible and in focus",
    ),
    Angle(
        label="Lifestyle",
        prompt_suffix="Candid lifestyle shot of the model in a natural pose, the jewelry catching the light",
    ),
)


class PromptAdapter:
    """
    Abstract base class for converting a GenerationRequest and one Angle into
    the ordered content parts a model receives.
    """
    def build(self, request: GenerationRequest, angle: Angle) -> List[ContentPart]:
        """
        Args:
            request (GenerationRequest): The user's photoshoot request.
            angle (Angle): The shot being generated.

        Returns:
            List[ContentPart]: inline images followed by the text prompt.
        """
        raise NotImplementedError

    def prompt(self, request: GenerationRequest, angle: Angle) -> str:
        raise NotImplementedError


class JewelryShowcaseAdapter(PromptAdapter):
    """
    Adapter for jewelry model photoshoots. The product image always comes
    first; an optional background image follows it and switches the prompt to
    compositing instructions.
    """
    def prompt(self, request: GenerationRequest, angle: Angle) -> str:
        sections = [
            "You are a professional jewelry photographer and editor.",
            "I have uploaded an image of a piece of jewelry.",
            "",
            "Task: Generate a photorealistic image of a model wearing this EXACT piece of jewelry.",
            f"Model Description: {request.description.strip() or 'An elegant fashion model'}.",
            f"Shot Type: {angle.prompt_suffix}.",
            "",
        ]

        if request.background is not None:
            sections += [
                "I have also uploaded a background image.",
                "CONTEXT: The user wants the model to appear in this specific location "
                "(e.g. their store or a specific venue).",
                "",
                "REQUIREMENTS:",
                "1. Use the provided background image as the environment/setting for the photoshoot.",
                "2. Composite the model seamlessly into this background.",
                "3. CRITICAL: Maintain the perspective, lighting direction, and atmosphere of the "
                "background image to ensure REALISM.",
                "4. Do not just paste the model; blend shadows and reflections so it looks like "
                "the photo was taken there.",
                "",
            ]
        else:
            sections += [
                "Background: Create a setting that matches the model description "
                "(e.g., studio, outdoors, luxury interior).",
                "",
            ]

        sections += [
            "CRITICAL PRODUCT REQUIREMENTS:",
            "1. The jewelry in the output MUST look exactly like the provided input jewelry image. "
            "Do not alter the design, gems, or metal of the jewelry.",
            "2. High resolution, professional fashion magazine quality.",
        ]
        return "\n".join(sections)

    def build(self, request: GenerationRequest, angle: Angle) -> List[ContentPart]:
        parts = [ContentPart.image(request.source)]
        if request.background is not None:
            parts.append(ContentPart.image(request.background))
        parts.append(ContentPart.from_text(self.prompt(request, angle)))
        return parts


def video_prompt(prompt: str) -> str:
    """Blank prompts fall back to the default showcase motion."""
    return prompt.strip() if prompt and prompt.strip() else DEFAULT_VIDEO_PROMPT


def caption_prompt(description: str, store_name: str, language: str = "Hebrew") -> str:
    if language not in SOCIAL_LANGUAGES:
        logger.warning(f"⚠️ Unusual caption language '{language}', passing it through.")

    return f"""
You are a social media manager for a jewelry brand named "{store_name or 'our brand'}".
Write a short, engaging, and elegant Instagram caption for a photo with this description:
"{description}"

Requirements:
- Language: {language} (Write ONLY in this language).
- Tone: Sophisticated, Luxury, Engaging.
- Include 5 relevant hashtags in the same language.
- Include call to action (Link in bio).
- Use emojis sparingly but effectively.
- KEEP IT UNDER 50 WORDS (excluding hashtags).
""".strip()
