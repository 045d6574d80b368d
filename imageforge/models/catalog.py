"""Model catalog: capabilities of every supported generation model."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from imageforge.errors import InvalidRequest, UnknownModel
from imageforge.models.options import AspectRatio, GenerationRequest

logger = logging.getLogger(__name__)

_ALL_RATIOS = [
    AspectRatio.R9_16, AspectRatio.R2_3, AspectRatio.R3_4, AspectRatio.R4_5,
    AspectRatio.R1_1, AspectRatio.R5_4, AspectRatio.R4_3, AspectRatio.R3_2,
    AspectRatio.R16_9, AspectRatio.R21_9,
]


@dataclass
class ModelSpec:
    """Metadata describing a remote generation model."""
    model_id: str
    name: str
    model_ref: str
    options_kind: str = "standard"
    supports_native_count: bool = False
    supports_resolution: bool = False
    max_image_count: int = 4
    max_reference_images: int = 1
    reference_input_key: str = "image_input"
    aspect_ratios: List[AspectRatio] = field(default_factory=lambda: list(_ALL_RATIOS))


DEFAULT_MODELS = [
    ModelSpec(
        model_id="gemini-2.5",
        name="Gemini 2.5",
        model_ref="google/nano-banana",
        max_reference_images=6,
    ),
    ModelSpec(
        model_id="gemini-3.0",
        name="Gemini 3.0 Pro",
        model_ref="google/nano-banana-pro",
        options_kind="resolution",
        supports_resolution=True,
        max_reference_images=14,
    ),
    ModelSpec(
        model_id="gpt-image-1.5",
        name="GPT Image 1.5",
        model_ref="openai/gpt-image-1.5",
        options_kind="gpt_image",
        supports_native_count=True,
        max_image_count=10,
        max_reference_images=10,
        reference_input_key="input_images",
        aspect_ratios=[AspectRatio.R2_3, AspectRatio.R1_1, AspectRatio.R3_2],
    ),
    ModelSpec(model_id="qwen-image", name="Qwen Image", model_ref="qwen/qwen-image"),
    ModelSpec(
        model_id="qwen-image-2512",
        name="Qwen Image 2512",
        model_ref="qwen/qwen-image-2512",
    ),
    ModelSpec(
        model_id="z-image-turbo",
        name="Z-Image Turbo",
        model_ref="prunaai/z-image-turbo",
        max_reference_images=0,
    ),
    ModelSpec(
        model_id="flux-2-pro",
        name="FLUX.2 Pro",
        model_ref="black-forest-labs/flux-2-pro",
    ),
]


class ModelCatalog:
    """Looks up model specs and validates requests against them."""

    def __init__(self, specs: Optional[List[ModelSpec]] = None):
        self._models: Dict[str, ModelSpec] = {}
        for spec in specs if specs is not None else DEFAULT_MODELS:
            self._models[spec.model_id] = spec

    def get(self, model_id: str) -> ModelSpec:
        spec = self._models.get(model_id)
        if spec is None:
            raise UnknownModel(model_id)
        return spec

    def list_models(self) -> List[ModelSpec]:
        return list(self._models.values())

    def normalize(self, request: GenerationRequest) -> GenerationRequest:
        """Return a copy of the request clamped to what the model accepts.

        Raises UnknownModel for an unregistered model and InvalidRequest for an
        empty prompt or options belonging to another model kind.
        """
        spec = self.get(request.model_id)
        prompt = request.prompt.strip()
        if not prompt:
            raise InvalidRequest("Enter a prompt first.")
        if request.options.kind != spec.options_kind:
            raise InvalidRequest(
                f"Options of kind '{request.options.kind}' do not apply to "
                f"{spec.name} (expects '{spec.options_kind}')"
            )

        image_count = max(1, min(request.image_count, spec.max_image_count))
        references = request.reference_images[: spec.max_reference_images]
        if len(references) < len(request.reference_images):
            logger.info(
                "Dropping %d reference image(s) over the %s limit of %d",
                len(request.reference_images) - len(references),
                spec.name,
                spec.max_reference_images,
            )
        aspect_ratio = request.aspect_ratio
        if aspect_ratio not in spec.aspect_ratios:
            aspect_ratio = AspectRatio.R1_1

        return request.model_copy(update={
            "prompt": prompt,
            "image_count": image_count,
            "reference_images": references,
            "aspect_ratio": aspect_ratio,
        })


def build_input(
    spec: ModelSpec,
    request: GenerationRequest,
    count: int,
    references: Optional[List[Any]] = None,
) -> Dict[str, Any]:
    """Serialize a request into the provider's input payload.

    references defaults to the request's raw bytes; callers that already
    uploaded them pass the returned addresses instead.
    """
    payload: Dict[str, Any] = {
        "prompt": request.prompt,
        "aspect_ratio": request.aspect_ratio.value,
    }
    refs = request.reference_images if references is None else references
    if refs:
        payload[spec.reference_input_key] = list(refs)
    payload["number_of_images"] = count
    payload.update(request.options.to_input())
    return payload
