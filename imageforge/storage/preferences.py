"""Small per-project UI flags (.preferences.json)."""

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from imageforge.models.options import AspectRatio
from imageforge.storage.assets import atomic_write

logger = logging.getLogger(__name__)

PREFERENCES_FILE = ".preferences.json"


class Preferences(BaseModel):
    selected_model: str = "gemini-2.5"
    image_count: int = 1
    aspect_ratio: AspectRatio = AspectRatio.R1_1
    activity_thumbnail_size: int = 64


def load_preferences(root: Path) -> Preferences:
    path = Path(root) / PREFERENCES_FILE
    if not path.exists():
        return Preferences()
    try:
        return Preferences.model_validate_json(path.read_bytes())
    except (OSError, ValidationError):
        logger.warning("Ignoring unreadable preferences at %s", path)
        return Preferences()


def save_preferences(root: Path, preferences: Preferences) -> None:
    atomic_write(Path(root) / PREFERENCES_FILE, preferences.model_dump_json(indent=2).encode("utf-8"))
