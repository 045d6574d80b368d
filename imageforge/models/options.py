"""Request options as a tagged union keyed by model kind.

Each variant carries exactly the options its models accept and knows how to
serialize itself into the provider's input payload.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class AspectRatio(str, Enum):
    R21_9 = "21:9"
    R16_9 = "16:9"
    R3_2 = "3:2"
    R4_3 = "4:3"
    R5_4 = "5:4"
    R1_1 = "1:1"
    R4_5 = "4:5"
    R3_4 = "3:4"
    R2_3 = "2:3"
    R9_16 = "9:16"


class ImageResolution(str, Enum):
    R1K = "1K"
    R2K = "2K"
    R4K = "4K"


class GPTQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GPTBackground(str, Enum):
    AUTO = "auto"
    TRANSPARENT = "transparent"
    OPAQUE = "opaque"


class GPTInputFidelity(str, Enum):
    HIGH = "high"
    LOW = "low"


class StandardOptions(BaseModel):
    """Models without any model-specific settings."""
    kind: Literal["standard"] = "standard"

    def to_input(self) -> Dict[str, Any]:
        return {}

    def summary(self) -> List[str]:
        return []


class ResolutionOptions(BaseModel):
    kind: Literal["resolution"] = "resolution"
    resolution: ImageResolution = ImageResolution.R2K

    def to_input(self) -> Dict[str, Any]:
        return {"resolution": self.resolution.value}

    def summary(self) -> List[str]:
        return [self.resolution.value]


class GPTImageOptions(BaseModel):
    kind: Literal["gpt_image"] = "gpt_image"
    quality: Optional[GPTQuality] = GPTQuality.MEDIUM
    background: Optional[GPTBackground] = GPTBackground.AUTO
    input_fidelity: Optional[GPTInputFidelity] = GPTInputFidelity.HIGH

    def to_input(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.quality is not None:
            payload["quality"] = self.quality.value
        if self.background is not None:
            payload["background"] = self.background.value
        if self.input_fidelity is not None:
            payload["input_fidelity"] = self.input_fidelity.value
        return payload

    def summary(self) -> List[str]:
        parts = []
        if self.quality is not None:
            parts.append(f"Q:{self.quality.value}")
        if self.background is not None and self.background != GPTBackground.AUTO:
            parts.append(f"BG:{self.background.value}")
        if self.input_fidelity is not None:
            parts.append(f"Fidelity:{self.input_fidelity.value}")
        return parts


ModelOptions = Annotated[
    Union[StandardOptions, ResolutionOptions, GPTImageOptions],
    Field(discriminator="kind"),
]


class GenerationRequest(BaseModel):
    """One user-visible generation request, before it becomes a job."""
    model_id: str
    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.R1_1
    image_count: int = 1
    options: ModelOptions = Field(default_factory=StandardOptions)
    # Raw reference image bytes; uploaded by the client, never persisted.
    reference_images: List[bytes] = Field(default_factory=list, repr=False)


OPTIONS_BY_KIND = {
    "standard": StandardOptions,
    "resolution": ResolutionOptions,
    "gpt_image": GPTImageOptions,
}


def default_options(kind: str) -> Union[StandardOptions, ResolutionOptions, GPTImageOptions]:
    return OPTIONS_BY_KIND[kind]()
