"""Per-project preferences."""

from fastapi import APIRouter, Depends

from imageforge.api.v1.deps import get_store
from imageforge.storage.assets import AssetStore
from imageforge.storage.preferences import Preferences, load_preferences, save_preferences

router = APIRouter()


@router.get("/preferences")
async def get_preferences(store: AssetStore = Depends(get_store)):
    return load_preferences(store.root).model_dump(mode="json")


@router.put("/preferences")
async def put_preferences(body: Preferences, store: AssetStore = Depends(get_store)):
    save_preferences(store.root, body)
    return body.model_dump(mode="json")
