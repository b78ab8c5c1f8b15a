from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import ValidationError

RESOURCE_DIRECTORIES = {
    "mod": "mods",
    "datapack": "datapacks",
    "shader": "shaderpacks",
    "resourcepack": "resourcepacks",
}


def resource_directory(instance_dir: Path, resource_type: str, filename: Optional[str] = None) -> Path:
    kind = resource_type.lower()
    if kind not in RESOURCE_DIRECTORIES:
        raise ValidationError(f"Unsupported resource type '{resource_type}'.")
    # Datapacks and resource packs shipped as jars are really mods.
    if kind in {"datapack", "resourcepack"} and filename and filename.lower().endswith(".jar"):
        kind = "mod"
    return Path(instance_dir) / RESOURCE_DIRECTORIES[kind]
