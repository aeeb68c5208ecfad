"""Generic model -> scene-graph exporter with skinning data.

Converts engine-neutral meshes, materials and skeletons into a scene graph,
writes it through a scene encoder (collada, obj, ply, 3ds) and, for collada,
patches real mesh names and optional skin controllers into the written file.

Usage:
    from model_export import ModelExporter
    ModelExporter().save_from_model(model, "out/model.dae", textures, skeleton)
"""

__version__ = "0.2.0"

from .errors import (
    EncodeFailure, MalformedSkeleton, MalformedTopology, MissingTexture,
    ModelExportError, PatchIOFailure,
)
from .export_profiles import ExportSettings, format_id_for_path
from .exporter.export_model import ModelExporter
