"""Second pass over a written collada document.

The scene writer names geometry after the internal mesh_N names and has no
skin controllers. This pass streams the document line by line and:
    1. rewrites every <geometry ...> open tag to
       <geometry id="meshId{N}" name="{real mesh name}">
       (N = 0-based count of geometry tags seen so far)
    2. optionally inserts a <library_controllers> block right before
       <library_visual_scenes>, one <controller> per mesh with bones

Controller layout per mesh:
    bind_shape_matrix   identity
    joints source       bone names, mesh bone order
    bind_poses source   inverse bind matrices, transposed, %.2f
    weights source      every VertexWeight value, bone by bone
    vertex_weights      <vcount> weights per vertex, <v> (joint, weight) pairs

Weight indices in <v> point at the FIRST position of an equal value in the
weights array, so vertices sharing an identical weight value share an index.

The document is written to a temporary file next to the original and only
moved over it once the whole pass succeeded.
"""

import logging
import os
import tempfile
from collections import namedtuple
from typing import Dict, List

from ..errors import PatchIOFailure
from .xml_text import _attr, _float_str

_log = logging.getLogger("model_export.skin_patch")

LIBRARY_VISUAL_SCENES = "<library_visual_scenes>"
GEOMETRY_TAG = "<geometry"

PatchState = namedtuple("PatchState", ["geom_index"])


# ===========================================================================
# Weight table
# ===========================================================================

class RiggedWeight:
    """Weights of one vertex, in the order bones were visited."""

    def __init__(self):
        self.weights = []
        self.bone_indices = []

    @property
    def weight_count(self):
        return len(self.weights)

    def add_weight(self, weight, bone_index):
        self.weights.append(weight)
        self.bone_indices.append(bone_index)


class WeightTable:
    """Flattened weight data for one mesh.

    Attributes:
        weights: every weight value, bone by bone then per-bone weight order
                 (the <float_array> contents).
        vertex_weights: vertex id -> RiggedWeight.
        first_index: weight value -> first position in `weights`.
    """

    def __init__(self):
        self.weights: List[float] = []
        self.vertex_weights: Dict[int, RiggedWeight] = {}
        self.first_index: Dict[float, int] = {}

    def add(self, vertex_id, weight, bone_index):
        self.first_index.setdefault(weight, len(self.weights))
        self.weights.append(weight)
        rigged = self.vertex_weights.get(vertex_id)
        if rigged is None:
            rigged = self.vertex_weights[vertex_id] = RiggedWeight()
        rigged.add_weight(weight, bone_index)

    def weight_index(self, weight):
        return self.first_index[weight]


def build_weight_table(mesh) -> WeightTable:
    """Collect a mesh's weights in bone-then-vertex-weight order."""
    table = WeightTable()
    for bone_index, bone in enumerate(mesh.bones):
        for vw in bone.vertex_weights:
            table.add(vw.vertex_id, vw.weight, bone_index)
    return table


# ===========================================================================
# Controller library
# ===========================================================================

class _LineWriter:
    """Collects output lines with a one-space-per-level indent."""

    def __init__(self, indent=2):
        self.lines = []
        self._indent = indent

    def _pad(self):
        return " " * self._indent

    def line(self, text=""):
        self.lines.append(f"{self._pad()}{text}" if text else "")

    def open(self, text):
        self.line(text)
        self._indent += 1

    def close(self, text):
        self._indent -= 1
        self.line(text)


def controller_name(mesh):
    return mesh.name.replace('_', '-')


def write_controller_library(scene, writer=None) -> List[str]:
    """Emit <library_controllers> for every skinned mesh of the scene.

    Mesh i is bound to geometry #meshId{i} (the id given by the geometry
    rewrite). Returns the emitted lines.
    """
    if writer is None:
        writer = _LineWriter()

    writer.open("<library_controllers>")
    for i, mesh in enumerate(scene.meshes):
        if not mesh.bones:
            continue
        name = controller_name(mesh)
        writer.open(f'<controller id="{_attr(name)}-skin" name="{_attr(name)}Skin">')
        writer.open(f'<skin source="#meshId{i}">')

        _write_bind_shape_matrix(writer)
        _write_joint_names(writer, mesh, name)
        _write_inverse_bind_matrices(writer, mesh, name)
        table = build_weight_table(mesh)
        _write_skin_weights(writer, table, name)

        writer.open("<joints>")
        writer.line(f'<input semantic="JOINT" source="#{_attr(name)}-skin-joints-array"/>')
        writer.line(f'<input semantic="INV_BIND_MATRIX" '
                    f'source="#{_attr(name)}-skin-bind_poses-array"/>')
        writer.close("</joints>")

        _write_vertex_weights(writer, mesh, table, name)

        writer.close("</skin>")
        writer.close("</controller>")
    writer.close("</library_controllers>")
    return writer.lines


def _write_bind_shape_matrix(writer):
    writer.open("<bind_shape_matrix>")
    writer.line("1 0 0 0")
    writer.line("0 1 0 0")
    writer.line("0 0 1 0")
    writer.line("0 0 0 1")
    writer.close("</bind_shape_matrix>")


def _write_accessor(writer, source, count, stride, param_name, param_type):
    writer.open("<technique_common>")
    writer.open(f'<accessor source="#{source}" count="{count}" stride="{stride}">')
    writer.line(f'<param name="{param_name}" type="{param_type}"/>')
    writer.close("</accessor>")
    writer.close("</technique_common>")


def _write_joint_names(writer, mesh, name):
    array_id = f"{_attr(name)}-skin-joints-array"
    writer.open(f'<source id="{array_id}">')
    writer.line(f'<Name_array id="{array_id}-data" count="{len(mesh.bones)}">'
                + " ".join(_attr(b.name) for b in mesh.bones)
                + "</Name_array>")
    _write_accessor(writer, f"{array_id}-data", len(mesh.bones), 1, "JOINT", "Name")
    writer.close("</source>")


def _write_inverse_bind_matrices(writer, mesh, name):
    array_id = f"{_attr(name)}-skin-bind_poses-array"
    writer.open(f'<source id="{array_id}">')
    writer.open(f'<float_array id="{array_id}-data" count="{len(mesh.bones) * 16}">')
    for i, bone in enumerate(mesh.bones):
        ibm = bone.offset_matrix.transposed()
        for row in range(4):
            writer.line(" ".join(f"{ibm[row][col]:.2f}" for col in range(4)))
        if i != len(mesh.bones) - 1:
            writer.line()
    writer.close("</float_array>")
    _write_accessor(writer, f"{array_id}-data", len(mesh.bones), 16,
                    "TRANSFORM", "float4x4")
    writer.close("</source>")


def _write_skin_weights(writer, table, name):
    array_id = f"{_attr(name)}-skin-weights-array"
    count = len(table.weights)
    writer.open(f'<source id="{array_id}">')
    writer.line(f'<float_array id="{array_id}-data" count="{count}">'
                + " ".join(_float_str(w) for w in table.weights)
                + "</float_array>")
    _write_accessor(writer, f"{array_id}-data", count, 1, "WEIGHT", "float")
    writer.close("</source>")


def _write_vertex_weights(writer, mesh, table, name):
    # One entry per mesh vertex; unweighted vertices get a count of 0
    vertex_count = mesh.vertex_count
    writer.open(f'<vertex_weights count="{vertex_count}">')
    writer.line(f'<input semantic="JOINT" source="#{_attr(name)}-skin-joints-array" offset="0"/>')
    writer.line(f'<input semantic="WEIGHT" source="#{_attr(name)}-skin-weights-array" offset="1"/>')

    counts = []
    pairs = []
    for vertex_id in range(vertex_count):
        rigged = table.vertex_weights.get(vertex_id)
        if rigged is None:
            counts.append("0")
            continue
        counts.append(str(rigged.weight_count))
        for weight, bone_index in zip(rigged.weights, rigged.bone_indices):
            pairs.append(f"{bone_index} {table.weight_index(weight)}")

    writer.line("<vcount>" + " ".join(counts) + "</vcount>")
    writer.line("<v>" + " ".join(pairs) + "</v>")
    writer.close("</vertex_weights>")


# ===========================================================================
# Line transducer
# ===========================================================================

def patch_geometry_line(line, state, mesh_names):
    """Rewrite one document line.

    Returns (output line, next state). Lines without a geometry open tag
    pass through unchanged. Geometry tags beyond len(mesh_names) are left
    as written.
    """
    if GEOMETRY_TAG not in line:
        return line, state

    idx = state.geom_index
    if idx >= len(mesh_names):
        _log.warning("Geometry #%d has no matching mesh; left unchanged", idx)
        return line, PatchState(idx + 1)

    indent = line[:len(line) - len(line.lstrip())]
    new_line = f'{indent}<geometry id="meshId{idx}" name="{_attr(mesh_names[idx])}">'
    return new_line, PatchState(idx + 1)


class SkinningDocumentPatcher:
    """Applies the geometry rewrite (and optional controllers) to a file.

    Usage:
        patcher = SkinningDocumentPatcher(write_controllers=False)
        patcher.patch("model.dae", generic_meshes, scene)
    """

    def __init__(self, write_controllers=False):
        self.write_controllers = write_controllers

    def patch_lines(self, lines, mesh_names, scene=None):
        """Yield the patched document lines (without line endings)."""
        state = PatchState(0)
        controllers_pending = self.write_controllers and scene is not None
        for line in lines:
            if controllers_pending and line.strip() == LIBRARY_VISUAL_SCENES:
                yield from write_controller_library(scene)
                controllers_pending = False
            out, state = patch_geometry_line(line, state, mesh_names)
            yield out

    def patch(self, path, meshes, scene=None):
        """Rewrite the document at path in place, atomically.

        Args:
            path: collada file written by the scene encoder.
            meshes: source GenericMesh list, in scene mesh order.
            scene: the encoded Scene (needed for controllers).

        Raises:
            PatchIOFailure: if reading, writing or replacing fails. The
                original file is left as it was.
        """
        mesh_names = [m.name for m in meshes]
        dir_name = os.path.dirname(os.path.abspath(path))

        tmp_path = None
        try:
            with open(path, "r", encoding="utf-8") as src, \
                    tempfile.NamedTemporaryFile(
                        "w", encoding="utf-8", dir=dir_name,
                        prefix=os.path.basename(path) + ".",
                        suffix=".tmp", delete=False) as dst:
                tmp_path = dst.name
                lines = (raw.rstrip("\r\n") for raw in src)
                for out in self.patch_lines(lines, mesh_names, scene):
                    dst.write(out)
                    dst.write("\n")
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, UnicodeError) as e:
            raise PatchIOFailure(f"Failed to patch {path}: {e}") from e
        finally:
            # Only set while the temp file has not replaced the document
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        _log.info("Patched %d geometry name(s) in %s",
                  len(mesh_names), os.path.basename(path))
