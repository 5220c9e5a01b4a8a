"""
Pipeline data model.

Tiles carry RGBA uint8 buffers shaped (height, width, 4). Geometry is always
expressed in source-image coordinates so the merger can re-project enhanced
tiles onto the upscaled canvas.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from pydantic import BaseModel, Field, field_validator

from tile_upscaler.core.config import settings

CHANNELS = 4

DEFAULT_PROMPT = "enhance detail, keep the original style"

_FACE_SUBJECT_HINTS = ("face", "person", "portrait")
_FACE_TEXTURE_HINTS = ("skin", "face")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class Tile:
    """Rectangular region cut from the source image."""
    x: int
    y: int
    width: int
    height: int
    pixels: np.ndarray


@dataclass
class EnhancedTile(Tile):
    """A tile plus its enhanced (possibly upscaled) pixels."""
    enhanced_pixels: np.ndarray = None

    @classmethod
    def from_tile(cls, tile: Tile, enhanced_pixels: np.ndarray) -> "EnhancedTile":
        return cls(
            x=tile.x,
            y=tile.y,
            width=tile.width,
            height=tile.height,
            pixels=tile.pixels,
            enhanced_pixels=enhanced_pixels,
        )


@dataclass(frozen=True)
class ImageAnalysis:
    """Semantic description of the whole image, produced by the analyzer."""
    description: str = "Image content"
    textures: List[str] = field(default_factory=lambda: ["general"])
    subjects: List[str] = field(default_factory=lambda: ["unknown"])

    def has_faces(self) -> bool:
        subjects = [s.lower() for s in self.subjects]
        textures = [t.lower() for t in self.textures]
        return (
            any(hint in s for s in subjects for hint in _FACE_SUBJECT_HINTS)
            or any(hint in t for t in textures for hint in _FACE_TEXTURE_HINTS)
        )


@dataclass(frozen=True)
class TileContext:
    """Per-tile context handed to the enhancement capability."""
    position: str
    image_description: str
    textures: List[str]
    subjects: List[str]


class PostProcessOptions(BaseModel):
    """Post-processing switches. Out-of-range amounts are clamped, never rejected."""
    anti_block: bool = True
    sharpen: bool = False
    sharpen_amount: float = Field(default=0.5, description="0..1")
    denoise: bool = False
    denoise_amount: float = Field(default=0.0, description="0..100")
    enhance_contrast: bool = False
    contrast_amount: float = Field(default=1.0, description="0..2, 1 = unchanged")

    @field_validator("sharpen_amount", mode="after")
    @classmethod
    def clamp_sharpen(cls, v) -> float:
        return _clamp(v, 0.0, 1.0)

    @field_validator("denoise_amount", mode="after")
    @classmethod
    def clamp_denoise(cls, v) -> float:
        return _clamp(v, 0.0, 100.0)

    @field_validator("contrast_amount", mode="after")
    @classmethod
    def clamp_contrast(cls, v) -> float:
        return _clamp(v, 0.0, 2.0)


class UpscaleOptions(BaseModel):
    """Recognized options of an upscale request, with their defaults.

    Geometry (tile size, overlap, scale) is validated by the pipeline so that
    violations surface as InvalidParameterError; the quality knobs are
    cosmetic and are clamped.
    """
    tile_size: int = Field(default=settings.DEFAULT_TILE_SIZE, description="Nominal tile edge in source pixels")
    overlap: int = Field(default=settings.DEFAULT_OVERLAP, description="Shared border between neighbouring tiles")
    upscale_factor: float = Field(default=settings.DEFAULT_UPSCALE_FACTOR, description="Output scale")
    prompt: str = Field(default=DEFAULT_PROMPT, max_length=settings.MAX_PROMPT_LENGTH)
    enhancement_passes: int = Field(default=1, description="Detail passes, 1..MAX_ENHANCEMENT_PASSES")
    final_pass: bool = Field(default=False, description="Extra whole-image pass at scale 1")
    sharpness: float = Field(default=50, description="0..100")
    denoise: float = Field(default=0, description="0..100")
    contrast: float = Field(default=50, description="0..100")
    concurrency: Optional[int] = Field(default=None, description="Worker pool size; defaults to TILE_CONCURRENCY")

    @field_validator("prompt", mode="before")
    @classmethod
    def default_blank_prompt(cls, v) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_PROMPT
        return v

    @field_validator("enhancement_passes", mode="after")
    @classmethod
    def clamp_passes(cls, v) -> int:
        return int(_clamp(v, 1, settings.MAX_ENHANCEMENT_PASSES))

    @field_validator("sharpness", "denoise", "contrast", mode="after")
    @classmethod
    def clamp_quality(cls, v) -> float:
        return _clamp(v, 0.0, 100.0)

    @field_validator("concurrency", mode="after")
    @classmethod
    def clamp_concurrency(cls, v) -> Optional[int]:
        if v is None:
            return None
        return max(1, v)

    @property
    def worker_count(self) -> int:
        return self.concurrency or settings.TILE_CONCURRENCY


@dataclass
class UpscaleResult:
    """Final image plus the response metadata."""
    image: np.ndarray
    tiles_processed: int
    ai_enhanced: bool
    duration_ms: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])
