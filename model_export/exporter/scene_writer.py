"""Scene encoders.

A scene encoder turns an in-memory Scene into a file for a format id:

    encoder.export_file(scene, path, format_id) -> bool

SceneFileWriter is the built-in encoder. It knows:
    "collada"  text XML, one element per line (the skin patch pass
               relies on each <geometry> open tag sitting on its own line)
    "obj"      Wavefront OBJ plus its .mtl, written through trimesh
    "ply"      ASCII PLY through trimesh, all meshes merged
    "3ds"      binary 3D Studio chunks (16-bit vertex / face counts)

Collada geometry ids are meshId{N} (N = scene mesh index), the same ids
the skin patch pass writes, so <instance_geometry> urls stay valid after
the patch. UVs are flipped (v = 1 - v) when flip_uvs is set.
"""

import logging
import os
import struct

import numpy as np
import trimesh
from trimesh.visual import TextureVisuals
from trimesh.visual.material import SimpleMaterial

from ..scene_graph.sg_classes import TextureSlotType
from .xml_text import _attr, _floats

_log = logging.getLogger("model_export.writer")


def _material_id(index):
    return f"m{index}mat"


def geometry_id(mesh_index):
    return f"meshId{mesh_index}"


class SceneFileWriter:
    """Built-in scene encoder.

    Usage:
        writer = SceneFileWriter(flip_uvs=True)
        ok = writer.export_file(scene, "out.dae", "collada")
    """

    def __init__(self, flip_uvs=True, authoring_tool="model_export"):
        self.flip_uvs = flip_uvs
        self.authoring_tool = authoring_tool
        self._writers = {
            "collada": self._write_collada,
            "obj": self._write_obj,
            "ply": self._write_ply,
            "3ds": self._write_3ds,
        }

    @property
    def supported_formats(self):
        return sorted(self._writers)

    def export_file(self, scene, path, format_id) -> bool:
        """Write scene to path. Returns False when the format is unknown
        or the file could not be written."""
        write = self._writers.get(format_id)
        if write is None:
            _log.error("Unsupported export format '%s'", format_id)
            return False
        try:
            write(scene, path)
        except (OSError, ValueError) as e:
            _log.error("Writing %s failed: %s", path, e)
            return False
        return True

    def _uv(self, uvw):
        u, v = uvw[0], uvw[1]
        return (u, 1.0 - v) if self.flip_uvs else (u, v)

    # ======================================================================
    # COLLADA
    # ======================================================================

    def _write_collada(self, scene, path):
        out = _XmlLines()
        out.line('<?xml version="1.0" encoding="utf-8"?>', indent=False)
        out.open('<COLLADA xmlns="http://www.collada.org/2005/11/COLLADASchema" '
                 'version="1.4.1">')

        out.open("<asset>")
        out.line(f"<contributor><authoring_tool>{_attr(self.authoring_tool)}"
                 f"</authoring_tool></contributor>")
        out.line('<unit name="meter" meter="1"/>')
        out.line("<up_axis>Y_UP</up_axis>")
        out.close("</asset>")

        self._collada_images(out, scene)
        self._collada_effects(out, scene)
        self._collada_materials(out, scene)
        self._collada_geometries(out, scene)

        out.open("<library_visual_scenes>")
        root = scene.root_node
        out.open(f'<visual_scene id="{_attr(root.name)}" name="{_attr(root.name)}">')
        ids = {}
        for child in root.children:
            self._collada_node(out, scene, child, ids)
        out.close("</visual_scene>")
        out.close("</library_visual_scenes>")

        out.open("<scene>")
        out.line(f'<instance_visual_scene url="#{_attr(root.name)}"/>')
        out.close("</scene>")
        out.close("</COLLADA>")

        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(out.lines))
            f.write("\n")

    def _collada_images(self, out, scene):
        out.open("<library_images>")
        for mi, material in enumerate(scene.materials):
            for si, slot in enumerate(material.texture_slots):
                image_id = f"{_material_id(mi)}-image{si}"
                out.open(f'<image id="{image_id}" name="{image_id}">')
                out.line(f"<init_from>{_attr(os.path.basename(slot.file_path))}</init_from>")
                out.close("</image>")
        out.close("</library_images>")

    def _collada_effects(self, out, scene):
        out.open("<library_effects>")
        for mi, material in enumerate(scene.materials):
            mat_id = _material_id(mi)
            out.open(f'<effect id="{mat_id}-fx" name="{_attr(material.name)}">')
            out.open("<profile_COMMON>")

            diffuse = None
            for si, slot in enumerate(material.texture_slots):
                if slot.texture_type == TextureSlotType.DIFFUSE:
                    diffuse = si
                    break
            if diffuse is not None:
                out.open(f'<newparam sid="{mat_id}-diffuse-surface">')
                out.line(f'<surface type="2D"><init_from>{mat_id}-image{diffuse}'
                         f'</init_from></surface>')
                out.close("</newparam>")
                out.open(f'<newparam sid="{mat_id}-diffuse-sampler">')
                out.line(f"<sampler2D><source>{mat_id}-diffuse-surface</source></sampler2D>")
                out.close("</newparam>")

            out.open('<technique sid="standard">')
            out.open("<phong>")
            if diffuse is not None:
                out.line(f'<diffuse><texture texture="{mat_id}-diffuse-sampler" '
                         f'texcoord="CHANNEL0"/></diffuse>')
            else:
                out.line('<diffuse><color sid="diffuse">0.6 0.6 0.6 1</color></diffuse>')
            out.close("</phong>")
            out.close("</technique>")

            out.close("</profile_COMMON>")
            out.close("</effect>")
        out.close("</library_effects>")

    def _collada_materials(self, out, scene):
        out.open("<library_materials>")
        for mi, material in enumerate(scene.materials):
            mat_id = _material_id(mi)
            out.open(f'<material id="{mat_id}" name="{_attr(material.name)}">')
            out.line(f'<instance_effect url="#{mat_id}-fx"/>')
            out.close("</material>")
        out.close("</library_materials>")

    def _collada_geometries(self, out, scene):
        out.open("<library_geometries>")
        for mesh_index, mesh in enumerate(scene.meshes):
            gid = geometry_id(mesh_index)
            out.open(f'<geometry id="{gid}" name="{_attr(mesh.name)}">')
            out.open("<mesh>")

            self._collada_source(out, f"{gid}-positions",
                                 [c for p in mesh.vertices for c in p], 3, "XYZ")
            self._collada_source(out, f"{gid}-normals",
                                 [c for n in mesh.normals for c in n], 3, "XYZ")
            channels = [ch for ch in mesh.texture_coords if ch]
            for ci, channel in enumerate(channels):
                self._collada_source(out, f"{gid}-tex{ci}",
                                     [c for uvw in channel for c in self._uv(uvw)],
                                     2, "ST")
            colors = mesh.vertex_colors[0] if mesh.vertex_colors else []
            if colors:
                self._collada_source(out, f"{gid}-color0",
                                     [c for col in colors for c in col], 4, "RGBA")

            out.open(f'<vertices id="{gid}-vertices">')
            out.line(f'<input semantic="POSITION" source="#{gid}-positions"/>')
            out.close("</vertices>")

            out.open(f'<triangles count="{len(mesh.faces)}" material="defaultMaterial">')
            out.line(f'<input semantic="VERTEX" source="#{gid}-vertices" offset="0"/>')
            out.line(f'<input semantic="NORMAL" source="#{gid}-normals" offset="0"/>')
            for ci in range(len(channels)):
                out.line(f'<input semantic="TEXCOORD" source="#{gid}-tex{ci}" '
                         f'offset="0" set="{ci}"/>')
            if colors:
                out.line(f'<input semantic="COLOR" source="#{gid}-color0" '
                         f'offset="0" set="0"/>')
            out.line("<p>" + " ".join(str(i) for face in mesh.faces
                                      for i in face.indices) + "</p>")
            out.close("</triangles>")

            out.close("</mesh>")
            out.close("</geometry>")
        out.close("</library_geometries>")

    def _collada_source(self, out, source_id, values, stride, params):
        sid = _attr(source_id)
        out.open(f'<source id="{sid}">')
        out.line(f'<float_array id="{sid}-array" count="{len(values)}">'
                 f"{_floats(values)}</float_array>")
        out.open("<technique_common>")
        out.open(f'<accessor source="#{sid}-array" count="{len(values) // stride}" '
                 f'stride="{stride}">')
        for name in params:
            out.line(f'<param name="{name}" type="float"/>')
        out.close("</accessor>")
        out.close("</technique_common>")
        out.close("</source>")

    def _collada_node(self, out, scene, node, ids):
        node_id = node.name
        n = ids.get(node_id, 0)
        ids[node_id] = n + 1
        if n:
            node_id = f"{node.name}-{n}"

        out.open(f'<node id="{_attr(node_id)}" name="{_attr(node.name)}" type="NODE">')
        m = node.transform
        out.line('<matrix sid="matrix">'
                 + _floats([m[r][c] for r in range(4) for c in range(4)])
                 + "</matrix>")
        for mesh_index in node.mesh_indices:
            mesh = scene.meshes[mesh_index]
            out.open(f'<instance_geometry url="#{geometry_id(mesh_index)}">')
            out.open("<bind_material>")
            out.open("<technique_common>")
            out.line(f'<instance_material symbol="defaultMaterial" '
                     f'target="#{_material_id(mesh.material_index)}"/>')
            out.close("</technique_common>")
            out.close("</bind_material>")
            out.close("</instance_geometry>")
        for child in node.children:
            self._collada_node(out, scene, child, ids)
        out.close("</node>")

    # ======================================================================
    # trimesh (OBJ, PLY)
    # ======================================================================

    def _placed_meshes(self, scene):
        """Yield (mesh, world matrix as a numpy 4x4) per node mesh reference."""
        for node in scene.root_node.walk():
            if not node.mesh_indices:
                continue
            world = np.array(node.world_transform(), dtype=np.float64)
            for mesh_index in node.mesh_indices:
                yield scene.meshes[mesh_index], world

    def _to_trimesh(self, mesh, world, **visual):
        vertices = np.asarray(mesh.vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.asarray([face.indices[:3] for face in mesh.faces],
                           dtype=np.int64).reshape(-1, 3)
        kwargs = dict(visual)
        if mesh.normals and len(mesh.normals) == len(mesh.vertices):
            kwargs["vertex_normals"] = np.asarray(mesh.normals, dtype=np.float64)

        tm = trimesh.Trimesh(vertices=vertices, faces=faces, process=False, **kwargs)
        tm.apply_transform(world)
        return tm

    def _obj_material(self, scene, mesh):
        """SimpleMaterial named after the scene material, with its diffuse map."""
        if not 0 <= mesh.material_index < len(scene.materials):
            return SimpleMaterial(name=_material_id(mesh.material_index))

        material = scene.materials[mesh.material_index]
        image = None
        for slot in material.texture_slots:
            if slot.texture_type == TextureSlotType.DIFFUSE and os.path.isfile(slot.file_path):
                from PIL import Image
                image = Image.open(slot.file_path)
                break
        return SimpleMaterial(name=material.name, image=image)

    def _write_obj(self, scene, path):
        out = trimesh.Scene()
        for mesh, world in self._placed_meshes(scene):
            visual = {}
            if len(mesh.texture_coords[0]) == len(mesh.vertices):
                uv = np.asarray([self._uv(uvw) for uvw in mesh.texture_coords[0]],
                                dtype=np.float64).reshape(-1, 2)
                visual["visual"] = TextureVisuals(
                    uv=uv, material=self._obj_material(scene, mesh))
            out.add_geometry(self._to_trimesh(mesh, world, **visual),
                             geom_name=mesh.name)

        out.export(file_obj=path, file_type="obj")

    def _write_ply(self, scene, path):
        parts = []
        for mesh, world in self._placed_meshes(scene):
            colors = mesh.vertex_colors[0] if mesh.vertex_colors else []
            visual = {}
            if colors and len(colors) == len(mesh.vertices):
                rgba = np.clip(np.rint(np.asarray(colors, dtype=np.float64) * 255), 0, 255)
                visual["vertex_colors"] = rgba.astype(np.uint8)
            parts.append(self._to_trimesh(mesh, world, **visual))

        merged = trimesh.util.concatenate(parts) if parts else trimesh.Trimesh()
        merged.export(file_obj=path, file_type="ply", encoding="ascii")

    # ======================================================================
    # 3D Studio (.3ds)
    # ======================================================================

    def _write_3ds(self, scene, path):
        edit = [_chunk(CHUNK_MESH_VERSION, struct.pack("<I", 3))]
        for material in scene.materials:
            body = _chunk(CHUNK_MAT_NAME, _cstr(material.name))
            for slot in material.texture_slots:
                if slot.texture_type == TextureSlotType.DIFFUSE:
                    body += _chunk(CHUNK_MAT_TEXMAP,
                                   _chunk(CHUNK_MAT_MAPNAME,
                                          _cstr(os.path.basename(slot.file_path))))
            edit.append(_chunk(CHUNK_MATERIAL, body))

        for mesh in scene.meshes:
            if len(mesh.vertices) > 0xFFFF or len(mesh.faces) > 0xFFFF:
                raise ValueError(f"Mesh '{mesh.name}' too large for 3ds "
                                 f"({len(mesh.vertices)} verts, {len(mesh.faces)} faces)")
            verts = struct.pack("<H", len(mesh.vertices)) + b"".join(
                struct.pack("<3f", *p) for p in mesh.vertices)
            uvs = struct.pack("<H", len(mesh.texture_coords[0])) + b"".join(
                struct.pack("<2f", *self._uv(uvw)) for uvw in mesh.texture_coords[0])
            faces = struct.pack("<H", len(mesh.faces)) + b"".join(
                struct.pack("<4H", *face.indices[:3], 0) for face in mesh.faces)
            if mesh.material_index < len(scene.materials):
                mat_name = scene.materials[mesh.material_index].name
                group = _cstr(mat_name) + struct.pack("<H", len(mesh.faces)) + b"".join(
                    struct.pack("<H", i) for i in range(len(mesh.faces)))
                faces += _chunk(CHUNK_FACE_MAT, group)

            tri_chunk = (_chunk(CHUNK_VERTLIST, verts)
                         + _chunk(CHUNK_MAPLIST, uvs)
                         + _chunk(CHUNK_FACELIST, faces))
            edit.append(_chunk(CHUNK_OBJECT,
                               _cstr(mesh.name) + _chunk(CHUNK_TRIMESH, tri_chunk)))

        data = _chunk(CHUNK_MAIN,
                      _chunk(CHUNK_VERSION, struct.pack("<I", 3))
                      + _chunk(CHUNK_EDIT, b"".join(edit)))
        with open(path, "wb") as f:
            f.write(data)


# 3ds chunk ids
CHUNK_MAIN = 0x4D4D
CHUNK_VERSION = 0x0002
CHUNK_EDIT = 0x3D3D
CHUNK_MESH_VERSION = 0x3D3E
CHUNK_MATERIAL = 0xAFFF
CHUNK_MAT_NAME = 0xA000
CHUNK_MAT_TEXMAP = 0xA200
CHUNK_MAT_MAPNAME = 0xA300
CHUNK_OBJECT = 0x4000
CHUNK_TRIMESH = 0x4100
CHUNK_VERTLIST = 0x4110
CHUNK_FACELIST = 0x4120
CHUNK_FACE_MAT = 0x4130
CHUNK_MAPLIST = 0x4140


def _chunk(chunk_id, payload):
    """3ds chunk: uint16 id, uint32 length (header included), payload."""
    return struct.pack("<HI", chunk_id, 6 + len(payload)) + payload


def _cstr(text):
    return text.encode("ascii", errors="replace") + b"\x00"


class _XmlLines:
    """Indented XML line builder (2 spaces per level)."""

    def __init__(self):
        self.lines = []
        self._indent = 0

    def line(self, text, indent=True):
        pad = "  " * self._indent if indent else ""
        self.lines.append(pad + text)

    def open(self, text):
        self.line(text)
        self._indent += 1

    def close(self, text):
        self._indent -= 1
        self.line(text)
