"""Material and texture conversion for the scene graph.

Textures are written first as {dest_dir}/{texture name}{ext}. A material's
texture map only becomes a TextureSlot when that file exists on disk at
conversion time; missing files drop the slot, not the material.

Type mapping (generic -> scene slot):
    DIFFUSE -> DIFFUSE         AO       -> AMBIENT
    NORMAL  -> NORMALS         LIGHT    -> LIGHTMAP
    EMISSION -> EMISSIVE       SPECULAR -> SPECULAR
    anything else -> UNKNOWN

Wrap mapping: REPEAT -> WRAP, MIRROR -> MIRROR, CLAMP -> CLAMP, else WRAP.
"""

import logging
import os

from ..errors import MissingTexture
from ..model.generic import TextureType, WrapMode
from .sg_classes import (
    Material, TextureMapping, TextureOperation, TextureSlot,
    TextureSlotType, TextureWrapMode,
)

_log = logging.getLogger("model_export.materials")


_TEXTURE_TYPE_MAP = {
    TextureType.DIFFUSE: TextureSlotType.DIFFUSE,
    TextureType.AO: TextureSlotType.AMBIENT,
    TextureType.NORMAL: TextureSlotType.NORMALS,
    TextureType.LIGHT: TextureSlotType.LIGHTMAP,
    TextureType.EMISSION: TextureSlotType.EMISSIVE,
    TextureType.SPECULAR: TextureSlotType.SPECULAR,
}

_WRAP_MODE_MAP = {
    WrapMode.REPEAT: TextureWrapMode.WRAP,
    WrapMode.MIRROR: TextureWrapMode.MIRROR,
    WrapMode.CLAMP: TextureWrapMode.CLAMP,
}


def convert_texture_type(tex_type) -> TextureSlotType:
    return _TEXTURE_TYPE_MAP.get(tex_type, TextureSlotType.UNKNOWN)


def convert_wrap_mode(wrap_mode) -> TextureWrapMode:
    return _WRAP_MODE_MAP.get(wrap_mode, TextureWrapMode.WRAP)


class MaterialConverter:
    """Writes textures and builds scene materials for one export call.

    Args:
        dest_dir: directory the scene file is written to.
        settings: ExportSettings (texture extension, default material name).
        progress: object with set_progress(task, value), or None.
        batch: optional BatchTextureExporter; when given, bitmaps are queued
               on it instead of being written inline.
    """

    def __init__(self, dest_dir, settings, progress=None, batch=None):
        self.dest_dir = dest_dir
        self.settings = settings
        self.progress = progress
        self.batch = batch
        self.extracted_textures = []

    def texture_path(self, name):
        return os.path.join(self.dest_dir, name + self.settings.texture_extension)

    # -- textures --

    def export_textures(self, textures):
        """Write every texture once; duplicate output paths are skipped.

        A texture that fails to load or save is logged and skipped. Returns
        the paths that could not be written.
        """
        failed = []
        count = len(textures)
        for i, texture in enumerate(textures):
            path = self.texture_path(texture.name)
            if path in self.extracted_textures:
                continue
            self.extracted_textures.append(path)

            if self.progress is not None:
                self.progress.set_progress(
                    f"Exporting Texture {texture.name}", (i * 100) // count)

            try:
                bitmap = texture.get_bitmap()
            except Exception as e:
                _log.warning("Failed to load texture %s: %s", texture.name, e)
                failed.append(path)
                continue

            if self.batch is not None:
                self.batch.add(bitmap, path)
                continue
            try:
                bitmap.save(path)
            except Exception as e:
                _log.warning("Failed to write texture %s: %s", path, e)
                failed.append(path)
            finally:
                bitmap.close()

        if self.batch is not None:
            failed.extend(self.batch.export_all())

        if failed:
            _log.warning("%d texture(s) were not written: %s",
                         len(failed), ", ".join(failed))
        return failed

    # -- materials --

    def convert(self, scene, materials):
        """Append one scene Material per generic material.

        An empty material list yields a single default material so the scene
        always has at least one.
        """
        if not materials:
            scene.materials.append(Material(self.settings.default_material_name))
            return scene.materials

        for generic_mat in materials:
            material = Material(generic_mat.name)
            for tex_map in generic_mat.texture_maps:
                try:
                    slot = self.convert_texture_map(tex_map)
                except MissingTexture as e:
                    _log.warning("Material '%s': %s; slot skipped",
                                 generic_mat.name, e)
                    continue
                material.add_material_texture(slot)
            scene.materials.append(material)
        return scene.materials

    def convert_texture_map(self, tex_map) -> TextureSlot:
        """Build the slot for one texture map.

        Raises:
            MissingTexture: if the texture file is not on disk.
        """
        path = self.texture_path(tex_map.name)
        if not os.path.exists(path):
            raise MissingTexture(tex_map.name, path)

        return TextureSlot(
            file_path=path,
            texture_type=convert_texture_type(tex_map.type),
            texture_index=0,
            mapping=TextureMapping.FROM_UV,
            uv_index=0,
            blend_factor=1.0,
            operation=TextureOperation.ADD,
            wrap_mode_u=convert_wrap_mode(tex_map.wrap_mode_s),
            wrap_mode_v=convert_wrap_mode(tex_map.wrap_mode_t),
            flags=0,
        )
