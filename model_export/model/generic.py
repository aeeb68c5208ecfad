"""Engine-neutral model data handed to the exporter.

These are plain containers filled in by whatever loaded the model (a file
format plugin, a tool, a test). The exporter only reads them.

Bone transforms are stored as position / rotation / scale and composed on
demand; rotation is an XYZ Euler triple in radians or a (w, x, y, z)
quaternion.
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class TextureType(enum.Enum):
    """Role of a texture map on a generic material."""
    UNKNOWN = 0
    DIFFUSE = 1
    NORMAL = 2
    SPECULAR = 3
    EMISSION = 4
    AO = 5
    LIGHT = 6
    SHADOW = 7
    METALNESS = 8
    ROUGHNESS = 9


class WrapMode(enum.Enum):
    REPEAT = 0
    MIRROR = 1
    CLAMP = 2


# ---------------------------------------------------------------------------
# Skeleton
# ---------------------------------------------------------------------------

@dataclass
class Bone:
    """A single bone in the skeleton hierarchy."""
    name: str
    parent_index: int = -1          # -1 for root
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[float, ...] = (0.0, 0.0, 0.0)
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def local_matrix(self):
        """Parent-relative transform as a 4x4 Matrix (T @ R @ S)."""
        from mathutils import Euler, Matrix, Quaternion

        if len(self.rotation) == 4:
            rot = Quaternion(self.rotation).to_matrix().to_4x4()
        else:
            rot = Euler(self.rotation, 'XYZ').to_matrix().to_4x4()
        scale = Matrix.Diagonal((self.scale[0], self.scale[1], self.scale[2], 1.0))
        return Matrix.Translation(self.position) @ rot @ scale


@dataclass
class Skeleton:
    """Ordered bone list; parents are referenced by index."""
    bones: List[Bone] = field(default_factory=list)

    def get_children(self, bone_idx: int) -> List[int]:
        """Indices of the direct children of a bone, in skeleton order."""
        return [i for i, b in enumerate(self.bones) if b.parent_index == bone_idx]

    def root_indices(self) -> List[int]:
        return [i for i, b in enumerate(self.bones) if b.parent_index == -1]

    def find_bone_by_name(self, name: str) -> Optional[Bone]:
        for bone in self.bones:
            if bone.name == name:
                return bone
        return None


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass
class Vertex:
    pos: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    nrm: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    uv0: Tuple[float, float] = (0.0, 0.0)
    uv1: Tuple[float, float] = (0.0, 0.0)
    uv2: Tuple[float, float] = (0.0, 0.0)
    col: Tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)
    bone_ids: List[int] = field(default_factory=list)
    bone_weights: List[float] = field(default_factory=list)


@dataclass
class LodMesh:
    """One level of detail: a flat triangle index buffer."""
    faces: List[int] = field(default_factory=list)


@dataclass
class PolygonGroup:
    """A subset of faces with its own triangle index buffer."""
    faces: List[int] = field(default_factory=list)
    material_index: int = 0


@dataclass
class GenericMesh:
    name: str
    vertices: List[Vertex] = field(default_factory=list)
    lod_meshes: List[LodMesh] = field(default_factory=list)
    polygon_groups: List[PolygonGroup] = field(default_factory=list)
    material_index: int = 0
    vertex_skin_count: int = 4      # bone slots read per vertex
    display_lod_index: int = 0


# ---------------------------------------------------------------------------
# Materials / textures
# ---------------------------------------------------------------------------

@dataclass
class TextureMap:
    """Reference from a material to a texture by name."""
    name: str
    type: TextureType = TextureType.DIFFUSE
    wrap_mode_s: WrapMode = WrapMode.REPEAT
    wrap_mode_t: WrapMode = WrapMode.REPEAT


@dataclass
class GenericMaterial:
    name: str
    texture_maps: List[TextureMap] = field(default_factory=list)


@dataclass
class GenericTexture:
    """A named texture whose pixels come from a bitmap source.

    bitmap_source is a zero-argument callable returning an object with
    save(path) and close(), e.g. a Pillow Image.
    """
    name: str
    bitmap_source: object = None

    def get_bitmap(self):
        if self.bitmap_source is None:
            raise ValueError(f"Texture '{self.name}' has no bitmap source")
        return self.bitmap_source()


@dataclass
class GenericModel:
    meshes: List[GenericMesh] = field(default_factory=list)
    materials: List[GenericMaterial] = field(default_factory=list)

