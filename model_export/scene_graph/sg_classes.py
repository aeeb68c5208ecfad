"""Scene graph classes handed to the scene encoder.

Mirrors the interchange model used by the output formats:
- Scene: root node plus flat mesh and material lists
- Node: named transform node; children and mesh references by index
- Mesh: triangle geometry with 3 UV channels, 1 color channel and bones
- Bone: per-mesh bone with offset (inverse bind) matrix and vertex weights
- Material / TextureSlot: texture bindings

All of it is built once per export call and thrown away afterwards.
"""

import enum
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple


MAX_TEXCOORD_CHANNELS = 3


class TextureSlotType(enum.Enum):
    NONE = 0
    DIFFUSE = 1
    SPECULAR = 2
    AMBIENT = 3
    EMISSIVE = 4
    HEIGHT = 5
    NORMALS = 6
    SHININESS = 7
    OPACITY = 8
    DISPLACEMENT = 9
    LIGHTMAP = 10
    REFLECTION = 11
    UNKNOWN = 18


class TextureWrapMode(enum.Enum):
    WRAP = 0
    CLAMP = 1
    MIRROR = 2
    DECAL = 3


class TextureMapping(enum.Enum):
    FROM_UV = 0
    SPHERE = 1
    CYLINDER = 2
    BOX = 3
    PLANE = 4


class TextureOperation(enum.Enum):
    MULTIPLY = 0
    ADD = 1
    SUBTRACT = 2
    DIVIDE = 3


def identity_matrix():
    from mathutils import Matrix
    return Matrix.Identity(4)


@dataclass
class VertexWeight:
    vertex_id: int
    weight: float


@dataclass
class Bone:
    """Bone as referenced by one mesh.

    offset_matrix maps mesh space into bone space (inverse bind matrix).
    """
    name: str
    offset_matrix: object = field(default_factory=identity_matrix)
    vertex_weights: List[VertexWeight] = field(default_factory=list)

    @property
    def vertex_weight_count(self) -> int:
        return len(self.vertex_weights)


@dataclass
class Face:
    indices: Tuple[int, ...]


@dataclass
class Mesh:
    name: str
    material_index: int = 0
    vertices: List[Tuple[float, float, float]] = field(default_factory=list)
    normals: List[Tuple[float, float, float]] = field(default_factory=list)
    # MAX_TEXCOORD_CHANNELS lists of (u, v, w)
    texture_coords: List[List[Tuple[float, float, float]]] = field(
        default_factory=lambda: [[] for _ in range(MAX_TEXCOORD_CHANNELS)])
    vertex_colors: List[List[Tuple[float, float, float, float]]] = field(
        default_factory=lambda: [[]])
    faces: List[Face] = field(default_factory=list)
    bones: List[Bone] = field(default_factory=list)

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def has_bones(self) -> bool:
        return bool(self.bones)

    def find_bone_index(self, name: str) -> int:
        """Index of the bone called name in this mesh, or -1."""
        for i, bone in enumerate(self.bones):
            if bone.name == name:
                return i
        return -1


@dataclass
class TextureSlot:
    file_path: str
    texture_type: TextureSlotType
    texture_index: int = 0
    mapping: TextureMapping = TextureMapping.FROM_UV
    uv_index: int = 0
    blend_factor: float = 1.0
    operation: TextureOperation = TextureOperation.ADD
    wrap_mode_u: TextureWrapMode = TextureWrapMode.WRAP
    wrap_mode_v: TextureWrapMode = TextureWrapMode.WRAP
    flags: int = 0


@dataclass
class Material:
    name: str
    texture_slots: List[TextureSlot] = field(default_factory=list)

    def add_material_texture(self, slot: TextureSlot) -> None:
        # Slots of one type are numbered in the order they are added
        slot.texture_index = sum(
            1 for s in self.texture_slots if s.texture_type == slot.texture_type)
        self.texture_slots.append(slot)


@dataclass(eq=False)
class Node:
    """Transform node. transform is parent-relative."""
    name: str
    transform: object = field(default_factory=identity_matrix)
    children: List["Node"] = field(default_factory=list)
    mesh_indices: List[int] = field(default_factory=list)
    parent: Optional["Node"] = field(default=None, repr=False)

    def add_child(self, child: "Node") -> "Node":
        child.parent = self
        self.children.append(child)
        return child

    def walk(self) -> Iterator["Node"]:
        """Depth-first pre-order traversal, self first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, name: str) -> Optional["Node"]:
        for node in self.walk():
            if node.name == name:
                return node
        return None

    def world_transform(self):
        matrix = self.transform.copy()
        node = self.parent
        while node is not None:
            matrix = node.transform @ matrix
            node = node.parent
        return matrix


@dataclass(eq=False)
class Scene:
    root_node: Node = field(default_factory=lambda: Node("RootNode"))
    meshes: List[Mesh] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)

    @property
    def mesh_count(self) -> int:
        return len(self.meshes)

    @property
    def material_count(self) -> int:
        return len(self.materials)
