"""
Prompt construction for remote tile enhancement.

Turns the whole-image analysis and a tile's position into regeneration
instructions, so the model knows what texture it is looking at.
"""

from typing import List, Optional

from tile_upscaler.pipeline.models import TileContext

TEXTURE_INSTRUCTIONS = {
    "hair": "REGENERATE hair with individual strands, natural shine, subtle flyaways, and realistic highlights. Add micro-details like hair follicles and natural color variation.",
    "skin": "REGENERATE skin with realistic pores, subtle wrinkles, natural subsurface scattering, and micro-texture. Add realistic skin details like fine lines, natural oil sheen, and color variation.",
    "eyes": "REGENERATE eyes with detailed iris patterns, realistic catchlights, individual eyelashes, tear film reflection, and natural depth. Add the wet, glossy quality of real eyes.",
    "fabric": "REGENERATE fabric with visible thread patterns, weave texture, natural creases, and realistic material properties. Add micro-fibers and textile detail.",
    "leather": "REGENERATE leather with natural grain, pores, wear patterns, creases, and realistic sheen. Add the organic texture of real leather.",
    "metal": "REGENERATE metal with realistic reflections, surface scratches, patina, and material-appropriate shine. Add micro-texture and weathering.",
    "wood": "REGENERATE wood with detailed grain patterns, knots, natural color variation, and surface texture. Add the organic detail of real wood.",
    "stone": "REGENERATE stone with natural texture, cracks, mineral patterns, and weathering. Add realistic surface detail and depth.",
    "glass": "REGENERATE glass with realistic reflections, refractions, surface imperfections, and transparency. Add caustics and light interaction.",
    "water": "REGENERATE water with realistic ripples, reflections, transparency, and light caustics. Add natural water movement and surface detail.",
    "grass": "REGENERATE grass with individual blades, natural variation, shadows, and depth. Add realistic botanical detail.",
    "fur": "REGENERATE fur with individual strands, natural direction, underlayer, and realistic sheen. Add the softness and depth of real fur.",
    "feathers": "REGENERATE feathers with individual barbs, natural patterns, iridescence, and realistic structure. Add micro-detail and natural variation.",
    "foliage": "REGENERATE foliage with detailed leaves, veins, natural variation, and depth. Add realistic plant texture and light interaction.",
    "sky": "REGENERATE sky with realistic cloud detail, atmospheric depth, color gradients, and natural lighting. Add volumetric quality.",
    "face": "REGENERATE facial features with natural skin texture, pores, subtle expression lines, and realistic depth. Make the face look like a real high-quality photograph.",
    "person": "REGENERATE all human features: realistic skin pores, individual hair strands, natural eye detail, and lifelike texture throughout.",
}

GENERIC_TEXTURE_INSTRUCTION = (
    "REGENERATE all textures with photorealistic detail. Add fine micro-textures, "
    "natural imperfections, and realistic material properties."
)

CORE_INSTRUCTIONS = " ".join([
    "IMAGE REGENERATION TASK: This is a low-quality image. Your job is to REGENERATE it as a high-quality, photorealistic version.",
    "IMAGINE what this would look like as a professional photograph and ADD those realistic details.",
    "Keep the same subject, pose, composition, and colors - but ADD the fine details that are missing.",
])

CLOSING_INSTRUCTIONS = " ".join([
    "Add realistic micro-textures, natural imperfections, and material properties.",
    "The result should look like it was taken with a high-end camera, not upscaled from low quality.",
    "Make it photorealistic with natural lighting and depth.",
])

UNIVERSAL_INSTRUCTIONS = " ".join([
    "PHOTOREALISTIC REGENERATION: Transform this low-quality image into a high-quality, photorealistic version.",
    "IMAGINE this image was taken with a professional camera and ADD all the fine details that would be visible:",
    "- For SKIN: Add realistic pores, subtle wrinkles, natural texture, and subsurface scattering",
    "- For HAIR: Add individual strands, natural shine, flyaways, and color variation",
    "- For EYES: Add detailed iris patterns, realistic catchlights, wet reflections, and individual lashes",
    "- For FABRIC: Add thread patterns, weave texture, and realistic material properties",
    "- For ANY SURFACE: Add appropriate micro-textures, natural wear, and realistic material detail",
    "Keep the same subject, pose, lighting direction, and colors.",
    "The goal is to make this look like a real high-resolution photograph, not an upscaled low-quality image.",
    "Add depth, dimension, and photorealistic quality throughout.",
])


def texture_instructions(textures: List[str]) -> str:
    """One instruction per recognised texture, first matching keyword wins."""
    instructions = []
    for texture in textures:
        lower = texture.lower()
        for key, instruction in TEXTURE_INSTRUCTIONS.items():
            if key in lower:
                instructions.append(instruction)
                break

    return " ".join(instructions) if instructions else GENERIC_TEXTURE_INSTRUCTION


def build_context_prompt(user_prompt: str, context: TileContext) -> str:
    context_info = " ".join([
        f"CONTEXT: This tile is from the {context.position} of an image showing: {context.image_description}.",
        f"Main subjects: {', '.join(context.subjects)}.",
        f"Textures to regenerate: {', '.join(context.textures)}.",
    ])
    body = f"{CORE_INSTRUCTIONS} {texture_instructions(context.textures)} {CLOSING_INSTRUCTIONS}"

    if user_prompt and user_prompt.strip():
        return f"{context_info} {body} Additional: {user_prompt.strip()}"
    return f"{context_info} {body}"


def build_universal_prompt(user_prompt: str) -> str:
    if user_prompt and user_prompt.strip():
        return f"{UNIVERSAL_INSTRUCTIONS} Focus especially on: {user_prompt.strip()}"
    return UNIVERSAL_INSTRUCTIONS


def build_prompt(user_prompt: str, context: Optional[TileContext] = None) -> str:
    """Context-aware prompt when tile context is known, universal otherwise."""
    if context is not None:
        return build_context_prompt(user_prompt, context)
    return build_universal_prompt(user_prompt)
