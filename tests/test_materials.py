import os

import pytest

from model_export.export_profiles import ExportSettings
from model_export.model.generic import (
    GenericMaterial, GenericTexture, TextureMap, TextureType, WrapMode,
)
from model_export.scene_graph.sg_classes import Scene, TextureSlotType, TextureWrapMode
from model_export.scene_graph.sg_materials import (
    MaterialConverter, convert_texture_type, convert_wrap_mode,
)
from model_export.utils.batch_export import BatchTextureExporter

from conftest import FakeBitmap, RecordingProgress, make_material, make_texture


@pytest.mark.parametrize("generic, expected", [
    (TextureType.DIFFUSE, TextureSlotType.DIFFUSE),
    (TextureType.AO, TextureSlotType.AMBIENT),
    (TextureType.NORMAL, TextureSlotType.NORMALS),
    (TextureType.LIGHT, TextureSlotType.LIGHTMAP),
    (TextureType.EMISSION, TextureSlotType.EMISSIVE),
    (TextureType.SPECULAR, TextureSlotType.SPECULAR),
    (TextureType.SHADOW, TextureSlotType.UNKNOWN),
    (TextureType.METALNESS, TextureSlotType.UNKNOWN),
])
def test_texture_type_mapping(generic, expected):
    assert convert_texture_type(generic) == expected


@pytest.mark.parametrize("generic, expected", [
    (WrapMode.REPEAT, TextureWrapMode.WRAP),
    (WrapMode.MIRROR, TextureWrapMode.MIRROR),
    (WrapMode.CLAMP, TextureWrapMode.CLAMP),
    (None, TextureWrapMode.WRAP),
])
def test_wrap_mode_mapping(generic, expected):
    assert convert_wrap_mode(generic) == expected


class TestMaterialConverter:

    def test_missing_texture_drops_slot(self, tmp_path):
        scene = Scene()
        converter = MaterialConverter(str(tmp_path), ExportSettings())
        converter.convert(scene, [make_material("Skin", "skin_alb")])

        assert [m.name for m in scene.materials] == ["Skin"]
        assert scene.materials[0].texture_slots == []

    def test_existing_texture_becomes_slot(self, tmp_path):
        (tmp_path / "skin_nrm.png").write_bytes(b"png")
        material = GenericMaterial("Skin", texture_maps=[
            TextureMap("skin_nrm", TextureType.NORMAL, WrapMode.MIRROR, WrapMode.CLAMP),
            TextureMap("skin_alb"),
        ])
        scene = Scene()
        MaterialConverter(str(tmp_path), ExportSettings()).convert(scene, [material])

        slots = scene.materials[0].texture_slots
        assert len(slots) == 1
        slot = slots[0]
        assert slot.file_path == os.path.join(str(tmp_path), "skin_nrm.png")
        assert slot.texture_type == TextureSlotType.NORMALS
        assert slot.wrap_mode_u == TextureWrapMode.MIRROR
        assert slot.wrap_mode_v == TextureWrapMode.CLAMP
        assert slot.blend_factor == 1.0

    def test_slots_of_same_type_are_numbered(self, tmp_path):
        for name in ("a", "b"):
            (tmp_path / f"{name}.png").write_bytes(b"png")
        scene = Scene()
        MaterialConverter(str(tmp_path), ExportSettings()).convert(
            scene, [make_material("M", "a", "b")])
        assert [s.texture_index for s in scene.materials[0].texture_slots] == [0, 1]

    def test_empty_material_list_gets_default(self, tmp_path):
        scene = Scene()
        MaterialConverter(str(tmp_path), ExportSettings()).convert(scene, [])
        assert [m.name for m in scene.materials] == ["New Material"]

    def test_export_textures_writes_once_per_path(self, tmp_path):
        first, second = FakeBitmap(), FakeBitmap()
        progress = RecordingProgress()
        converter = MaterialConverter(str(tmp_path), ExportSettings(), progress=progress)
        converter.export_textures([
            make_texture("body", first),
            make_texture("body", second),
            make_texture("eyes"),
        ])

        assert (tmp_path / "body.png").exists()
        assert (tmp_path / "eyes.png").exists()
        assert first.closed and first.saved_to
        assert second.saved_to == []
        assert progress.steps == [("Exporting Texture body", 0),
                                  ("Exporting Texture eyes", 66)]

    def test_failed_textures_do_not_stop_export(self, tmp_path):
        class BrokenBitmap(FakeBitmap):
            def save(self, path):
                raise ValueError("unknown file extension")

        broken = BrokenBitmap()
        converter = MaterialConverter(str(tmp_path), ExportSettings())
        failed = converter.export_textures([
            make_texture("broken", broken),
            GenericTexture("unloadable"),
            make_texture("body"),
        ])

        assert failed == [os.path.join(str(tmp_path), "broken.png"),
                          os.path.join(str(tmp_path), "unloadable.png")]
        assert broken.closed
        assert (tmp_path / "body.png").exists()

    def test_threaded_failures_are_returned(self, tmp_path):
        class BrokenBitmap(FakeBitmap):
            def save(self, path):
                raise ValueError("unknown file extension")

        converter = MaterialConverter(str(tmp_path), ExportSettings(),
                                      batch=BatchTextureExporter(workers=2))
        failed = converter.export_textures([
            make_texture("broken", BrokenBitmap()),
            make_texture("body"),
        ])

        assert failed == [os.path.join(str(tmp_path), "broken.png")]
        assert (tmp_path / "body.png").exists()

    def test_exported_texture_is_attached(self, tmp_path):
        converter = MaterialConverter(str(tmp_path), ExportSettings())
        converter.export_textures([make_texture("body")])
        scene = Scene()
        converter.convert(scene, [make_material("Body", "body")])
        assert len(scene.materials[0].texture_slots) == 1

    def test_pillow_bitmap(self, tmp_path):
        Image = pytest.importorskip("PIL.Image")
        texture = make_texture("checker", Image.new("RGBA", (4, 4), (255, 0, 0, 255)))
        MaterialConverter(str(tmp_path), ExportSettings()).export_textures([texture])

        with Image.open(tmp_path / "checker.png") as img:
            assert img.size == (4, 4)
