"""Export a generic model to a scene-graph interchange file.

Pipeline:
    1. Skeleton -> "skeleton_root" node tree (BoneMatrixResolver,
       SkeletonGraphBuilder)
    2. Textures written to {dest_dir}/{name}.png, then materials converted
    3. Each GenericMesh -> scene Mesh (MeshConverter); one geometry node
       named after the file stem references all of them
    4. Scene handed to the encoder; format id picked from the extension
    5. Collada only: skin patch pass (exporter/skin_patch.py)

Progress milestones: skeleton 0, textures 0-100, meshes 50, save 80,
done 100. Each export call ends with exactly one success/failure
notification.
"""

import logging
import os
import time

from ..errors import EncodeFailure, ModelExportError
from ..export_profiles import ExportSettings, format_id_for_path, needs_skin_patch
from ..scene_graph.sg_classes import Material, Node, Scene
from ..scene_graph.sg_geometry import MeshConverter
from ..scene_graph.sg_materials import MaterialConverter
from ..scene_graph.sg_skeleton import BoneMatrixResolver, SkeletonGraphBuilder
from ..utils.batch_export import BatchTextureExporter
from .scene_writer import SceneFileWriter
from .skin_patch import SkinningDocumentPatcher

_log = logging.getLogger("model_export")


def _report(operator, level, message):
    """Report a message through the operator or the module logger."""
    if operator is not None and hasattr(operator, 'report'):
        operator.report({level}, message)
    else:
        _log.log(getattr(logging, level, logging.INFO), message)


class LoggingProgress:
    """Default progress sink: logs each stage change."""

    def __init__(self):
        self.task = ""
        self.value = 0

    def set_progress(self, task, value):
        self.task = task
        self.value = value
        _log.debug("[%3d%%] %s", value, task)


class LoggingNotifier:
    """Default result sink."""

    def notify(self, success, path):
        if success:
            _log.info("Exported %s successfully!", path)
        else:
            _log.error("Failed to export %s!", path)


class ModelExporter:
    """Runs one or more exports with fixed settings and collaborators.

    Args:
        settings: ExportSettings (defaults if None).
        encoder: object with export_file(scene, path, format_id) -> bool.
                 Defaults to the built-in SceneFileWriter.
        progress: object with set_progress(task, value).
        notifier: object with notify(success, path).
        operator: optional reporter with report(level_set, message); falls
                  back to logging.

    Exports of the same model must not run concurrently on one exporter.
    """

    def __init__(self, settings=None, encoder=None, progress=None,
                 notifier=None, operator=None):
        self.settings = settings or ExportSettings()
        self.encoder = encoder or SceneFileWriter(flip_uvs=self.settings.flip_uvs)
        self.progress = progress or LoggingProgress()
        self.notifier = notifier or LoggingNotifier()
        self.operator = operator
        self.bone_names = []

    # -- public entry points --

    def save_from_model(self, model, file_name, textures, skeleton=None,
                        node_array=None):
        """Export a GenericModel. Returns True on success."""
        return self.save_from_meshes(model.meshes, model.materials, file_name,
                                     textures, skeleton, node_array)

    def save_from_meshes(self, meshes, materials, file_name, textures,
                         skeleton=None, node_array=None):
        """Export meshes + materials (+ skeleton). Returns True on success.

        Failures (bad topology, bad skeleton, encoder or patch errors) are
        reported once through the notifier and return False.
        """
        t_start = time.time()

        def run():
            scene = Scene(root_node=Node("RootNode"))

            self._set_progress("Exporting Skeleton...", 0)
            resolver = None
            if skeleton is not None:
                resolver = BoneMatrixResolver(
                    skeleton, max_depth=self.settings.max_skeleton_depth)
            SkeletonGraphBuilder(resolver, self.settings.skeleton_root_name) \
                .build(scene.root_node)

            self._save_materials(scene, materials, file_name, textures)

            self._set_progress("Exporting Meshes...", 50)
            self._save_meshes(scene, meshes, skeleton, file_name, node_array,
                              resolver)

            self._set_progress("Saving File...", 80)
            self._save_scene(file_name, scene, meshes)

        if not self._run_export(run, file_name):
            return False

        _report(self.operator, 'INFO',
                f"Exported {len(meshes)} mesh(es) to "
                f"{os.path.basename(file_name)} in {time.time() - t_start:.2f}s")
        return True

    def save_from_object(self, generic_mesh, file_name):
        """Export a single mesh without skeleton or textures."""

        def run():
            scene = Scene(root_node=Node("Root"))
            converter = MeshConverter()
            mesh = converter.convert(generic_mesh, 0, material_count=0)
            mesh.material_index = 0
            scene.meshes.append(mesh)
            scene.materials.append(Material(self.settings.object_material_name))
            scene.root_node.add_child(Node(
                os.path.splitext(os.path.basename(file_name))[0],
                mesh_indices=[0]))
            self._save_scene(file_name, scene, [generic_mesh])

        return self._run_export(run, file_name)

    # -- pipeline steps --

    def _run_export(self, run, file_name):
        try:
            run()
        except ModelExportError as e:
            _report(self.operator, 'ERROR', str(e))
            self.notifier.notify(False, file_name)
            return False
        except Exception:
            self.notifier.notify(False, file_name)
            raise

        self._set_progress("Done", 100)
        self.notifier.notify(True, file_name)
        return True

    def _set_progress(self, task, value):
        self.progress.set_progress(task, value)

    def _save_materials(self, scene, materials, file_name, textures):
        batch = BatchTextureExporter() if self.settings.threaded_textures else None
        converter = MaterialConverter(os.path.dirname(file_name), self.settings,
                                      progress=self.progress, batch=batch)
        converter.export_textures(textures)
        converter.convert(scene, materials)

    def _save_meshes(self, scene, meshes, skeleton, file_name, node_array,
                     resolver):
        converter = MeshConverter(resolver, bone_names=self.bone_names)
        material_count = scene.material_count
        for index, generic_mesh in enumerate(meshes):
            scene.meshes.append(converter.convert(
                generic_mesh, index, material_count, skeleton, node_array))

        geom_node = Node(os.path.splitext(os.path.basename(file_name))[0],
                         mesh_indices=list(range(scene.mesh_count)))
        scene.root_node.add_child(geom_node)

    def _save_scene(self, file_name, scene, meshes):
        """Encode the scene, then patch collada output.

        Raises:
            EncodeFailure: the encoder reported failure (no patch runs).
            PatchIOFailure: the patch pass could not rewrite the file.
        """
        format_id = format_id_for_path(file_name)
        if not self.encoder.export_file(scene, file_name, format_id):
            raise EncodeFailure(file_name, format_id)

        if needs_skin_patch(format_id):
            patcher = SkinningDocumentPatcher(
                write_controllers=self.settings.write_controllers)
            patcher.patch(file_name, meshes, scene)
