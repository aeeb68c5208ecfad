"""Exception types raised by the model export pipeline.

Material and texture problems are absorbed where they occur (the slot is
skipped and a warning logged). Topology, skeleton, encode and patch
problems abort the current export.
"""


class ModelExportError(Exception):
    """Base class for every export failure."""


class MalformedTopology(ModelExportError):
    """An index buffer cannot be split into whole triangles."""

    def __init__(self, mesh_name, index_count):
        self.mesh_name = mesh_name
        self.index_count = index_count
        super().__init__(
            f"Mesh '{mesh_name}': index buffer of length {index_count} "
            f"is not a multiple of 3")


class MalformedSkeleton(ModelExportError):
    """Bone hierarchy contains a cycle or exceeds the depth limit."""


class MissingTexture(ModelExportError):
    """A referenced texture file does not exist at the export path."""

    def __init__(self, texture_name, path):
        self.texture_name = texture_name
        self.path = path
        super().__init__(f"Texture '{texture_name}' not found at {path}")


class EncodeFailure(ModelExportError):
    """The scene encoder reported that the file could not be written."""

    def __init__(self, path, format_id):
        self.path = path
        self.format_id = format_id
        super().__init__(f"Failed to encode {path} as '{format_id}'")


class PatchIOFailure(ModelExportError):
    """Rewriting the serialized document failed; the original is untouched."""
