from google.genai import types

from stockmeta.models import MODE_PROMPT

METADATA_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "title": types.Schema(type=types.Type.STRING),
        "description": types.Schema(type=types.Type.STRING),
        "keywords": types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)),
        "category": types.Schema(type=types.Type.STRING),
    },
    required=["title", "description", "keywords", "category"],
)

PROMPT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "description": types.Schema(type=types.Type.STRING),
    },
    required=["description"],
)

METADATA_PROMPT = """I will give you images. You have to:
1. Write detailed prompt for each images (populate the 'description' field).
2. Write title for each images as per instructions and guide.
3. Write keywords for each images as per instructions and guide.
4. Select a relevant Category.

Instructions: Analyze this image and generate content based on the following exact and strict requirements. Please give keywords separated by comma also give single word keyword and prefer singular keyword. please give single word keyword and give at maximum 30 keywords also give a title and title character will be around 75 -130 character, also give title in sentence case means only first letter will be in capital.

Provide JSON object with 'title', 'description', 'keywords', and 'category'."""


def schema_for(mode):
    return PROMPT_SCHEMA if mode == MODE_PROMPT else METADATA_SCHEMA


def create_prompt(controls, mode):
    """Build the prompt text for a generation mode"""
    switches = controls["prompt_switches"]

    # Custom prompts win over the built-in templates
    custom_prompt = controls.get("custom_prompt_entry_prompt", "").strip()
    if mode == MODE_PROMPT and switches.get("custom_prompt") and custom_prompt:
        return (
            "Analyze this image based on the following instructions:\n"
            f"{custom_prompt}\n\nProvide JSON object with only 'description'."
        )
    custom_metadata = controls.get("custom_prompt_entry", "").strip()
    if mode != MODE_PROMPT and controls.get("custom_prompt_select") == "set_custom" and custom_metadata:
        return (
            "Analyze this image based on the following instructions:\n"
            f"{custom_metadata}\n\n"
            "Provide JSON object with 'title', 'description', 'keywords', and a relevant 'category'."
        )

    if mode != MODE_PROMPT:
        return METADATA_PROMPT

    prompt = (
        "Act as an expert metadata generator specializing in stock media requirements.\n"
        "Analyze this image.\n"
        "IMPORTANT: If the subject is isolated, assume it's on a white or transparent background. "
        'Do NOT mention "black background", "dark background", or similar phrases.\n'
    )
    prompt += (
        "Generate only a compelling description.\n"
        f"Target Description Length: MUST BE EXACTLY {controls['desc_words']} words. "
        "Provide the exact word count requested.\n"
    )
    if switches.get("silhouette"):
        prompt += "Style: Silhouette. Emphasize this.\n"
    if switches.get("white_bg"):
        prompt += "Background: Plain white. Mention 'white background', 'isolated'.\n"
    if switches.get("transparent_bg"):
        prompt += "Background: Transparent. Mention 'transparent background', 'isolated'.\n"
    prompt += (
        "Focus on facts and concepts, avoiding subjective words (e.g., beautiful, amazing).\n\n"
        "Provide JSON object with only 'description'."
    )
    return prompt
