"""
Image model registry.

Single source of truth for every model the service has ever offered. Each
entry describes which provider serves it, what it costs in credits, which
aspect ratios it accepts and how it expects dimensions to be passed.

Deprecated models stay in the registry with is_active=False so historical
gallery entries still resolve to a name, but they cannot be dispatched.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from app.providers.dimensions import Dimensions, get_dalle_size, get_dimensions, get_gpt_image_size


class Provider(str, Enum):
    """Image providers with an adapter implementation."""
    OPENAI = "openai"
    REPLICATE = "replicate"
    GOOGLE = "google"


class ModelTier(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    PREMIUM = "premium"
    ULTRA = "ultra"


class DimensionType(str, Enum):
    """How a model wants the output size expressed."""
    ASPECT_RATIO = "aspect_ratio"  # pass "16:9" through
    WIDTH_HEIGHT = "width_height"  # convert to pixels / size class


@dataclass(frozen=True)
class ModelCapability:
    id: str
    name: str
    provider: Provider
    provider_model_id: str
    credits: int
    tier: ModelTier
    description: str
    supported_ratios: tuple[str, ...]
    dimension_type: DimensionType
    default_params: dict = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    estimated_time: Optional[str] = None
    is_active: bool = True
    is_new: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider.value,
            "credits": self.credits,
            "tier": self.tier.value,
            "description": self.description,
            "supported_ratios": list(self.supported_ratios),
            "dimension_type": self.dimension_type.value,
            "tags": list(self.tags),
            "estimated_time": self.estimated_time,
            "is_active": self.is_active,
            "is_new": self.is_new,
        }


_FIVE_RATIOS = ("1:1", "16:9", "4:3", "3:4", "9:16")
_GEMINI_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "2:3", "3:2", "4:5", "5:4", "21:9")
_GPT_IMAGE_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "21:9")


MODEL_REGISTRY: dict[str, ModelCapability] = {
    # === FAST TIER (1 credit) ===
    "flux-schnell": ModelCapability(
        id="flux-schnell",
        name="FLUX Schnell",
        provider=Provider.REPLICATE,
        provider_model_id="black-forest-labs/flux-schnell",
        credits=1,
        tier=ModelTier.FAST,
        description="Fast generation, great for testing ideas",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"output_format": "webp", "output_quality": 90, "go_fast": True},
        tags=("fast", "versatile"),
        estimated_time="~2s",
    ),
    "nano-banana": ModelCapability(
        id="nano-banana",
        name="Nano Banana",
        provider=Provider.GOOGLE,
        provider_model_id="gemini-2.5-flash-image",
        credits=1,
        tier=ModelTier.FAST,
        description="Google Gemini 2.5 Flash - fast image generation with great quality",
        supported_ratios=_GEMINI_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        tags=("fast", "google", "text-rendering"),
        estimated_time="~3s",
        is_new=True,
    ),
    "gpt-image-mini": ModelCapability(
        id="gpt-image-mini",
        name="GPT Image Mini",
        provider=Provider.OPENAI,
        provider_model_id="gpt-image-1-mini",
        credits=1,
        tier=ModelTier.FAST,
        description="Fast & affordable OpenAI image generation",
        supported_ratios=_GPT_IMAGE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        default_params={"quality": "auto"},
        tags=("fast", "openai"),
        estimated_time="~3s",
        is_new=True,
    ),

    # === STANDARD TIER (2 credits) ===
    "flux-dev": ModelCapability(
        id="flux-dev",
        name="FLUX Dev",
        provider=Provider.REPLICATE,
        provider_model_id="black-forest-labs/flux-dev",
        credits=2,
        tier=ModelTier.STANDARD,
        description="High quality, excellent detail (deprecated - use Nano Banana)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"output_format": "webp", "output_quality": 90},
        tags=("deprecated",),
        estimated_time="~5s",
        is_active=False,
    ),
    "ideogram-turbo": ModelCapability(
        id="ideogram-turbo",
        name="Ideogram v2a Turbo",
        provider=Provider.REPLICATE,
        provider_model_id="ideogram-ai/ideogram-v2a-turbo",
        credits=2,
        tier=ModelTier.STANDARD,
        description="Fast & affordable, great text rendering + multiple styles",
        supported_ratios=("1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "16:10", "10:16", "3:1", "1:3"),
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"style_type": "Auto", "magic_prompt_option": "Auto"},
        tags=("text-rendering", "versatile"),
        estimated_time="~3s",
    ),
    "seedream-3": ModelCapability(
        id="seedream-3",
        name="Seedream 3.0",
        provider=Provider.REPLICATE,
        provider_model_id="bytedance/seedream-3",
        credits=2,
        tier=ModelTier.STANDARD,
        description="Native 2K resolution (deprecated - use Ideogram for text)",
        supported_ratios=("1:1", "16:9", "4:3", "3:4", "9:16", "3:2", "2:3"),
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"size": "regular", "guidance_scale": 2.5},
        tags=("deprecated",),
        estimated_time="~4s",
        is_active=False,
    ),
    "gpt-image": ModelCapability(
        id="gpt-image",
        name="GPT Image",
        provider=Provider.OPENAI,
        provider_model_id="gpt-image-1",
        credits=2,
        tier=ModelTier.STANDARD,
        description="Balanced OpenAI image generation",
        supported_ratios=_GPT_IMAGE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        default_params={"quality": "auto"},
        tags=("balanced", "openai"),
        estimated_time="~5s",
        is_new=True,
    ),

    # === PREMIUM TIER (3 credits) ===
    "flux-pro": ModelCapability(
        id="flux-pro",
        name="FLUX 1.1 Pro",
        provider=Provider.REPLICATE,
        provider_model_id="black-forest-labs/flux-1.1-pro",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="Faster and improved (deprecated - use GPT Image 1.5)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"output_format": "webp", "output_quality": 90, "safety_tolerance": 2},
        tags=("deprecated",),
        estimated_time="~3s",
        is_active=False,
    ),
    "ideogram-3": ModelCapability(
        id="ideogram-3",
        name="Ideogram v3 Balanced",
        provider=Provider.REPLICATE,
        provider_model_id="ideogram-ai/ideogram-v3-balanced",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="Balance speed, quality & cost, excellent text rendering",
        supported_ratios=(
            "1:3", "3:1", "1:2", "2:1", "9:16", "16:9", "10:16", "16:10",
            "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "1:1",
        ),
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"style_type": "Auto", "magic_prompt_option": "Auto"},
        tags=("text-rendering", "balanced"),
        estimated_time="~5s",
    ),
    "imagen-4": ModelCapability(
        id="imagen-4",
        name="Imagen 4",
        provider=Provider.REPLICATE,
        provider_model_id="google/imagen-4",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="Google flagship (deprecated - use Nano Banana Pro)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"output_format": "jpg", "safety_filter_level": "block_only_high"},
        tags=("deprecated",),
        estimated_time="~6s",
        is_active=False,
    ),
    "dall-e-3": ModelCapability(
        id="dall-e-3",
        name="DALL-E 3",
        provider=Provider.OPENAI,
        provider_model_id="dall-e-3",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="Legacy model (deprecated May 2026 - use GPT Image 1.5)",
        supported_ratios=("1:1", "16:9", "9:16"),
        dimension_type=DimensionType.WIDTH_HEIGHT,
        tags=("deprecated",),
        estimated_time="~8s",
        is_active=False,
    ),
    "gpt-image-hd": ModelCapability(
        id="gpt-image-hd",
        name="GPT Image 1.5",
        provider=Provider.OPENAI,
        provider_model_id="gpt-image-1.5",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="State-of-the-art OpenAI image generation, best quality",
        supported_ratios=_GPT_IMAGE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        default_params={"quality": "high"},
        tags=("premium", "openai", "best-quality"),
        estimated_time="~8s",
        is_new=True,
    ),
    "recraft-v3": ModelCapability(
        id="recraft-v3",
        name="Recraft V3",
        provider=Provider.REPLICATE,
        provider_model_id="recraft-ai/recraft-v3",
        credits=3,
        tier=ModelTier.PREMIUM,
        description="Design & vector specialist, perfect for logos and illustrations",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"style": "any"},
        tags=("design", "vector", "logos"),
        estimated_time="~5s",
        is_new=True,
    ),

    # === ULTRA TIER (4 credits) ===
    "flux-ultra": ModelCapability(
        id="flux-ultra",
        name="FLUX 1.1 Pro Ultra",
        provider=Provider.REPLICATE,
        provider_model_id="black-forest-labs/flux-1.1-pro-ultra",
        credits=4,
        tier=ModelTier.ULTRA,
        description="Maximum quality FLUX (deprecated - use Nano Banana Pro)",
        supported_ratios=("1:1", "16:9", "9:16", "4:3", "3:4", "21:9"),
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"output_format": "jpg", "output_quality": 95},
        tags=("deprecated",),
        estimated_time="~10s",
        is_active=False,
    ),
    "nano-banana-pro": ModelCapability(
        id="nano-banana-pro",
        name="Nano Banana Pro",
        provider=Provider.GOOGLE,
        provider_model_id="gemini-3-pro-image-preview",
        credits=4,
        tier=ModelTier.ULTRA,
        description="Google Gemini 3 Pro - premium quality with thinking, 4K output, and Google Search grounding",
        supported_ratios=_GEMINI_RATIOS,
        dimension_type=DimensionType.ASPECT_RATIO,
        default_params={"imageSize": "2K"},
        tags=("google", "premium", "text-rendering", "4k", "thinking"),
        estimated_time="~10s",
        is_new=True,
    ),

    # === DEPRECATED MODELS (kept for historical gallery display) ===
    "lcm": ModelCapability(
        id="lcm",
        name="LCM (Latent Consistency)",
        provider=Provider.REPLICATE,
        provider_model_id="fofr/latent-consistency-model:683d19dc312f7a9f0428b04429a9ccefd28dbf7785fef083ad5cf991b65f406f",
        credits=1,
        tier=ModelTier.FAST,
        description="Ultra-fast 0.6s generation (deprecated)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        tags=("deprecated",),
        is_active=False,
    ),
    "realistic-vision": ModelCapability(
        id="realistic-vision",
        name="Realistic Vision v5.1",
        provider=Provider.REPLICATE,
        provider_model_id="lucataco/realistic-vision-v5.1:2c8e954decbf70b7607a4414e5785ef9e4de4b8c51d50fb8b8b349160e0ef6bb",
        credits=1,
        tier=ModelTier.FAST,
        description="Photorealistic specialist (deprecated)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        tags=("deprecated",),
        is_active=False,
    ),
    "proteus-v03": ModelCapability(
        id="proteus-v03",
        name="Proteus v0.3",
        provider=Provider.REPLICATE,
        provider_model_id="datacte/proteus-v0.3:b28b79d725c8548b173b6a19ff9bffd16b9b80df5b18b8dc5cb9e1ee471bfa48",
        credits=1,
        tier=ModelTier.FAST,
        description="Anime specialist (deprecated)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        tags=("deprecated",),
        is_active=False,
    ),
    "playground-v25": ModelCapability(
        id="playground-v25",
        name="Playground v2.5",
        provider=Provider.REPLICATE,
        provider_model_id="playgroundai/playground-v2.5-1024px-aesthetic:a45f82a1382bed5c7aeb861dac7c7d191b0fdf74d8d57c4a0e6ed7d4d0bf7d24",
        credits=5,
        tier=ModelTier.ULTRA,
        description="State-of-the-art aesthetic quality (deprecated)",
        supported_ratios=_FIVE_RATIOS,
        dimension_type=DimensionType.WIDTH_HEIGHT,
        tags=("deprecated",),
        is_active=False,
    ),
}

# Credits charged for ids missing from the registry (display only)
DEFAULT_MODEL_CREDITS = 2


def resolve(model_id: str) -> Optional[ModelCapability]:
    """Look up a model by id. Inactive models are returned too."""
    return MODEL_REGISTRY.get(model_id)


def is_ratio_supported(capability: ModelCapability, ratio: str) -> bool:
    return ratio in capability.supported_ratios


def dimensions_for(capability: ModelCapability, ratio: str) -> Union[Dimensions, str]:
    """
    Translate a ratio into what the model's provider expects.

    - aspect_ratio models: the ratio string itself
    - OpenAI width_height models: a size class such as "1536x1024"
    - other width_height models: Dimensions(width, height)
    """
    if capability.dimension_type == DimensionType.ASPECT_RATIO:
        return ratio
    if capability.provider == Provider.OPENAI:
        if capability.provider_model_id == "dall-e-3":
            return get_dalle_size(ratio)
        return get_gpt_image_size(ratio)
    return get_dimensions(ratio)


def get_active_models() -> list[ModelCapability]:
    return [m for m in MODEL_REGISTRY.values() if m.is_active]


def get_models_by_tier(tier: ModelTier) -> list[ModelCapability]:
    return [m for m in get_active_models() if m.tier == tier]


def get_model_credits(model_id: str) -> int:
    capability = resolve(model_id)
    return capability.credits if capability else DEFAULT_MODEL_CREDITS


def get_model_name(model_id: str) -> str:
    capability = resolve(model_id)
    return capability.name if capability else model_id.upper()


def get_all_supported_ratios() -> list[str]:
    """All distinct ratios across active models, in first-seen order."""
    ratios: dict[str, None] = {}
    for model in get_active_models():
        for ratio in model.supported_ratios:
            ratios.setdefault(ratio, None)
    return list(ratios)
