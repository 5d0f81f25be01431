"""
Aspect-ratio to pixel-size tables for providers that want explicit sizes.

Models with an `aspect_ratio` dimension type receive the ratio string as-is.
Models with `width_height` get a concrete size from one of these tables.
Every lookup falls back to the 1:1 entry.
"""
from typing import NamedTuple

ASPECT_RATIOS = (
    "1:1", "16:9", "9:16", "4:3", "3:4",
    "3:2", "2:3", "1:2", "2:1", "1:3", "3:1",
    "10:16", "16:10", "4:5", "5:4", "21:9",
)


class Dimensions(NamedTuple):
    width: int
    height: int


# Standard dimension mappings for width/height based models (~1 megapixel)
STANDARD_DIMENSIONS = {
    "1:1": Dimensions(1024, 1024),
    "16:9": Dimensions(1344, 768),
    "9:16": Dimensions(768, 1344),
    "4:3": Dimensions(1152, 896),
    "3:4": Dimensions(896, 1152),
    "3:2": Dimensions(1216, 832),
    "2:3": Dimensions(832, 1216),
    "1:2": Dimensions(704, 1408),
    "2:1": Dimensions(1408, 704),
    "1:3": Dimensions(576, 1728),
    "3:1": Dimensions(1728, 576),
    "10:16": Dimensions(800, 1280),
    "16:10": Dimensions(1280, 800),
    "4:5": Dimensions(896, 1120),
    "5:4": Dimensions(1120, 896),
    "21:9": Dimensions(1536, 640),
}

# DALL-E 3 only accepts these three sizes
DALLE_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1792x1024",
    "9:16": "1024x1792",
}

# GPT Image models accept square, landscape and portrait size classes
GPT_IMAGE_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1536x1024",
    "4:3": "1536x1024",
    "3:2": "1536x1024",
    "21:9": "1536x1024",
    "9:16": "1024x1536",
    "3:4": "1024x1536",
    "2:3": "1024x1536",
}


def get_dimensions(ratio: str) -> Dimensions:
    """Get width/height for a ratio, defaulting to 1024x1024."""
    return STANDARD_DIMENSIONS.get(ratio, STANDARD_DIMENSIONS["1:1"])


def get_dalle_size(ratio: str) -> str:
    """Get the DALL-E 3 size string for a ratio."""
    return DALLE_SIZES.get(ratio, DALLE_SIZES["1:1"])


def get_gpt_image_size(ratio: str) -> str:
    """Get the GPT Image size class for a ratio."""
    return GPT_IMAGE_SIZES.get(ratio, GPT_IMAGE_SIZES["1:1"])


def is_valid_ratio(ratio: str) -> bool:
    return ratio in STANDARD_DIMENSIONS


def parse_ratio(ratio: str) -> tuple[int, int]:
    """Parse "16:9" into (16, 9)."""
    w, h = ratio.split(":")
    return int(w), int(h)
