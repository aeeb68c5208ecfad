"""Convert GenericMesh objects into scene-graph meshes.

Per vertex:
    position, normal, 3 UV channels (always written, unused ones stay at
    the vertex's zero UVs), 1 vertex color channel and, when a skeleton is
    given, bone weights.

Bones are collected lazily per mesh: a bone is added to mesh.bones the
first time any vertex references it, keyed by name, and gets its offset
matrix from the BoneMatrixResolver.

Triangles come from the active LOD buffer when it has indices, otherwise
from every polygon group in order.
"""

import logging
from typing import List, Optional, Sequence

from ..errors import MalformedTopology
from .sg_classes import Bone, Face, Mesh, VertexWeight, identity_matrix

_log = logging.getLogger("model_export.geometry")

# Weights at or below this are not recorded when an explicit weight exists
MIN_WEIGHT_AMOUNT = 0


def clamp_material_index(material_index: int, material_count: int) -> int:
    """Material index used by the scene mesh.

    Indices inside (0, material_count) are kept; anything else, including
    0 itself, maps to material 0.
    """
    if 0 < material_index < material_count:
        return material_index
    return 0


def resolve_weight(bone_weights: Sequence[float], slot: int) -> Optional[float]:
    """Weight recorded for bone slot `slot`, or None to record nothing.

    - explicit weight in (0, 1]  -> used as is
    - explicit weight > 1        -> 1.0
    - explicit weight <= 0       -> not recorded
    - no weight for this slot    -> 1.0
    Weights are never renormalized across slots.
    """
    if slot < len(bone_weights):
        weight = bone_weights[slot]
        if weight > MIN_WEIGHT_AMOUNT:
            return weight if weight <= 1 else 1.0
        return None
    return 1.0


def triangulate_lod(mesh_name: str, faces: Sequence[int]) -> List[Face]:
    """Split a LOD index buffer into triangles; its length must be a multiple of 3."""
    if len(faces) % 3 != 0:
        raise MalformedTopology(mesh_name, len(faces))
    return [Face((faces[f], faces[f + 1], faces[f + 2]))
            for f in range(0, len(faces), 3)]


def triangulate_group(faces: Sequence[int]) -> List[Face]:
    """Split a polygon group buffer into triangles, dropping a trailing partial one."""
    whole = len(faces) - len(faces) % 3
    return [Face((faces[f], faces[f + 1], faces[f + 2]))
            for f in range(0, whole, 3)]


class MeshConverter:
    """Builds one scene Mesh per GenericMesh.

    Args:
        resolver: BoneMatrixResolver for the export's skeleton, or None
                  for meshes exported without skinning.
        bone_names: optional list that collects the name of every bone
                    added to any mesh (shared across the export call).
    """

    def __init__(self, resolver=None, bone_names=None):
        self.resolver = resolver
        self.bone_names = bone_names if bone_names is not None else []

    def convert(self, generic_mesh, index, material_count,
                skeleton=None, node_array=None) -> Mesh:
        """Convert one mesh.

        Args:
            generic_mesh: GenericMesh to convert.
            index: position of the mesh in the export; the scene mesh is
                   named mesh_{index} because the collada writer needs
                   plain internal names (the real name is patched back in).
            material_count: number of materials already in the scene.
            skeleton: Skeleton for bone weights, or None.
            node_array: optional remap table from vertex bone ids to
                        skeleton bone indices.

        Raises:
            MalformedTopology: if the active LOD buffer is not whole triangles.
        """
        mesh = Mesh(f"mesh_{index}",
                    material_index=clamp_material_index(
                        generic_mesh.material_index, material_count))

        uv0, uv1, uv2 = mesh.texture_coords
        colors = mesh.vertex_colors[0]

        for vertex_id, v in enumerate(generic_mesh.vertices):
            mesh.vertices.append(tuple(v.pos))
            mesh.normals.append(tuple(v.nrm))
            uv0.append((v.uv0[0], v.uv0[1], 0.0))
            uv1.append((v.uv1[0], v.uv1[1], 0.0))
            uv2.append((v.uv2[0], v.uv2[1], 0.0))
            colors.append(tuple(v.col))

            if skeleton is not None:
                self._add_vertex_weights(mesh, generic_mesh, vertex_id, v,
                                         skeleton, node_array)

        mesh.faces = self._build_faces(generic_mesh)

        _log.debug("Mesh '%s' -> %s: %d verts, %d tris, %d bones",
                   generic_mesh.name, mesh.name, mesh.vertex_count,
                   len(mesh.faces), len(mesh.bones))
        return mesh

    # -- skinning --

    def _add_vertex_weights(self, mesh, generic_mesh, vertex_id, v,
                            skeleton, node_array):
        for slot, bone_id in enumerate(v.bone_ids):
            if slot >= generic_mesh.vertex_skin_count:
                break

            bone_idx = node_array[bone_id] if node_array is not None else bone_id
            src_bone = skeleton.bones[bone_idx]

            bone_ind = mesh.find_bone_index(src_bone.name)
            if bone_ind == -1:
                mesh.bones.append(Bone(
                    name=src_bone.name,
                    offset_matrix=self._inverse_bind(bone_idx),
                ))
                self.bone_names.append(src_bone.name)
                bone_ind = len(mesh.bones) - 1

            weight = resolve_weight(v.bone_weights, slot)
            if weight is not None:
                mesh.bones[bone_ind].vertex_weights.append(
                    VertexWeight(vertex_id, weight))

    def _inverse_bind(self, bone_idx):
        if self.resolver is None:
            return identity_matrix()
        return self.resolver.inverse_bind_matrix(bone_idx)

    # -- topology --

    def _build_faces(self, generic_mesh) -> List[Face]:
        lods = generic_mesh.lod_meshes
        lod_idx = generic_mesh.display_lod_index
        if lods and 0 <= lod_idx < len(lods) and lods[lod_idx].faces:
            return triangulate_lod(generic_mesh.name, lods[lod_idx].faces)

        faces = []
        for group in generic_mesh.polygon_groups:
            faces.extend(triangulate_group(group.faces))
        return faces
