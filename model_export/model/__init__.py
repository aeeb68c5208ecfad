"""Input data model for the exporter."""

from .generic import (
    Bone, GenericMaterial, GenericMesh, GenericModel, GenericTexture,
    LodMesh, PolygonGroup, Skeleton, TextureMap, TextureType, Vertex,
    WrapMode,
)
