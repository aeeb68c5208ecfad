"""Export settings and output format registry.

The destination file extension selects the scene format identifier that is
handed to the scene encoder. Formats listed in SKIN_PATCH_FORMATS get a
second text pass (exporter/skin_patch.py) because their writer cannot emit
skin controllers itself.

Adding a new format:
    1. Teach the encoder to write it (exporter/scene_writer.py)
    2. Call register_format() with the extension and identifier
"""

import os
from dataclasses import dataclass
from typing import Dict


# ---------------------------------------------------------------------------
# Format registry
# ---------------------------------------------------------------------------

DEFAULT_FORMAT_ID = "collada"

FORMAT_IDS: Dict[str, str] = {
    ".obj": "obj",
    ".3ds": "3ds",
    ".dae": "collada",
    ".ply": "ply",
}

# Formats whose serialized document gets the geometry-id / controller pass
SKIN_PATCH_FORMATS = {"collada"}


def register_format(extension: str, format_id: str) -> None:
    """Map a file extension (with leading dot) to an encoder format id."""
    FORMAT_IDS[extension.lower()] = format_id


def format_id_for_path(path: str) -> str:
    """Pick the encoder format id from the destination file's extension.

    Unknown extensions fall back to DEFAULT_FORMAT_ID.
    """
    ext = os.path.splitext(path)[1]
    return FORMAT_IDS.get(ext.lower(), DEFAULT_FORMAT_ID)


def needs_skin_patch(format_id: str) -> bool:
    return format_id in SKIN_PATCH_FORMATS


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ExportSettings:
    """Options for one export call."""

    # Extension used for textures written next to the scene file.
    texture_extension: str = ".png"

    # UV V-flip: True = apply v = 1.0 - v when encoding.
    flip_uvs: bool = True

    # Emit <library_controllers> during the skin patch pass.
    # Off by default; only the geometry id rewrite runs.
    write_controllers: bool = False

    # Hand texture writes to the batch exporter instead of writing inline.
    threaded_textures: bool = False

    # Guard for recursive bone walks (cyclic or very deep hierarchies).
    max_skeleton_depth: int = 1024

    # Material synthesized when the model has none.
    default_material_name: str = "New Material"

    # Material used by save_from_object().
    object_material_name: str = "NewMaterial"

    # Name of the synthetic node every root bone hangs from.
    skeleton_root_name: str = "skeleton_root"
