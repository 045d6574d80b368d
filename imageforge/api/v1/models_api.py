"""Models API: list generation models and their capabilities."""

from fastapi import APIRouter, Depends

from imageforge.api.v1.deps import get_ledger
from imageforge.jobs.ledger import JobLedger

router = APIRouter()


@router.get("/models")
async def list_models(ledger: JobLedger = Depends(get_ledger)):
    """List catalog models with capability flags and observed durations."""
    specs = ledger.catalog.list_models()
    return {
        "models": [
            {
                "model_id": s.model_id,
                "name": s.name,
                "model_ref": s.model_ref,
                "options_kind": s.options_kind,
                "supports_native_count": s.supports_native_count,
                "supports_resolution": s.supports_resolution,
                "max_image_count": s.max_image_count,
                "max_reference_images": s.max_reference_images,
                "aspect_ratios": [r.value for r in s.aspect_ratios],
                "estimated_seconds": ledger.estimated_duration(s.model_id),
            }
            for s in specs
        ],
        "count": len(specs),
    }
