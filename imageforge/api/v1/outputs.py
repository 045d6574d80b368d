"""Output files, provenance and project size."""

from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

from imageforge.api.v1.deps import get_store
from imageforge.storage.assets import AssetStore, format_size, project_size

router = APIRouter()


class DeleteOutputsRequest(BaseModel):
    file_names: List[str]


def _output_file(store: AssetStore, file_name: str, thumbnail: bool) -> Path:
    name = Path(file_name).name
    folder = store.thumbnails_dir if thumbnail else store.generations_dir
    path = folder / name
    if name != file_name or not path.is_file():
        raise HTTPException(status_code=404, detail="Output file not found")
    return path


@router.get("/outputs/{file_name}")
async def get_output(file_name: str, thumbnail: bool = False, store: AssetStore = Depends(get_store)):
    """Download a generated image or its thumbnail."""
    path = _output_file(store, file_name, thumbnail)
    return FileResponse(path, media_type="image/png", filename=path.name)


@router.get("/outputs/{file_name}/provenance")
async def get_provenance(file_name: str, store: AssetStore = Depends(get_store)):
    _output_file(store, file_name, thumbnail=False)
    provenance = store.load_provenance(file_name)
    if provenance is None:
        raise HTTPException(status_code=404, detail="No provenance recorded")
    return provenance.model_dump(mode="json")


@router.post("/outputs/delete")
async def delete_outputs(body: DeleteOutputsRequest, store: AssetStore = Depends(get_store)):
    reclaimed = store.delete_outputs(body.file_names)
    return {"deleted": len(body.file_names), "reclaimed_sidecars": reclaimed}


@router.get("/project")
async def get_project(store: AssetStore = Depends(get_store)):
    size = project_size(store.root) if store.root.exists() else 0
    return {
        "path": str(store.root),
        "size_bytes": size,
        "size_text": format_size(size),
    }
