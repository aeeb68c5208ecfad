import pytest

from model_export.model.generic import (
    Bone, GenericMaterial, GenericMesh, GenericTexture, LodMesh,
    PolygonGroup, Skeleton, TextureMap, Vertex,
)


class FakeBitmap:
    """Bitmap stand-in that writes a few bytes and records close()."""

    def __init__(self, payload=b"\x89PNG fake"):
        self.payload = payload
        self.saved_to = []
        self.closed = False

    def save(self, path):
        with open(path, "wb") as f:
            f.write(self.payload)
        self.saved_to.append(path)

    def close(self):
        self.closed = True


class RecordingEncoder:
    """Scene encoder that records calls and writes a minimal collada file."""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def export_file(self, scene, path, format_id):
        self.calls.append((scene, path, format_id))
        if self.result:
            lines = [
                '<?xml version="1.0" encoding="utf-8"?>',
                "<COLLADA>",
                "  <library_geometries>",
            ]
            for m in scene.meshes:
                lines.append(f'    <geometry id="{m.name}-mesh" name="{m.name}">')
                lines.append("    </geometry>")
            lines += [
                "  </library_geometries>",
                "  <library_visual_scenes>",
                "  </library_visual_scenes>",
                "</COLLADA>",
            ]
            with open(path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        return self.result


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, success, path):
        self.calls.append((success, path))


class RecordingProgress:
    def __init__(self):
        self.steps = []

    def set_progress(self, task, value):
        self.steps.append((task, value))


@pytest.fixture
def pelvis_spine():
    """Root 'pelvis' at y=1 with child 'spine' 0.5 above it."""
    return Skeleton(bones=[
        Bone("pelvis", parent_index=-1, position=(0.0, 1.0, 0.0)),
        Bone("spine", parent_index=0, position=(0.0, 0.5, 0.0)),
    ])


@pytest.fixture
def spine_mesh():
    """One vertex bound 100% to bone 1 ('spine')."""
    return GenericMesh(
        name="Body",
        vertices=[Vertex(pos=(0.0, 1.5, 0.0), bone_ids=[1], bone_weights=[1.0])],
    )


@pytest.fixture
def quad_mesh():
    verts = [
        Vertex(pos=(0.0, 0.0, 0.0), nrm=(0.0, 0.0, 1.0), uv0=(0.0, 0.0)),
        Vertex(pos=(1.0, 0.0, 0.0), nrm=(0.0, 0.0, 1.0), uv0=(1.0, 0.0)),
        Vertex(pos=(1.0, 1.0, 0.0), nrm=(0.0, 0.0, 1.0), uv0=(1.0, 1.0)),
        Vertex(pos=(0.0, 1.0, 0.0), nrm=(0.0, 0.0, 1.0), uv0=(0.0, 1.0)),
    ]
    return GenericMesh(name="Quad_Body", vertices=verts,
                       polygon_groups=[PolygonGroup(faces=[0, 1, 2, 0, 2, 3])])


def make_texture(name, bitmap=None):
    if bitmap is None:
        bitmap = FakeBitmap()
    return GenericTexture(name, bitmap_source=lambda: bitmap)


def make_material(name, *texture_names):
    return GenericMaterial(name, texture_maps=[TextureMap(t) for t in texture_names])


def lod_mesh(name, faces, vertex_count=4):
    return GenericMesh(name=name, vertices=[Vertex() for _ in range(vertex_count)],
                       lod_meshes=[LodMesh(faces=faces)])
