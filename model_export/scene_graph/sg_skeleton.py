"""Bone matrices and skeleton node hierarchy.

BoneMatrixResolver composes bone transforms from the parent chain:
    world(bone) = world(parent) @ local(bone)
    inverse_bind(bone) = world(bone)^-1

SkeletonGraphBuilder turns the flat bone list into a node tree under a
synthetic "skeleton_root" node. Each bone node carries the bone's local
(forward) matrix, and children keep skeleton order.

Neither caches anything beyond one export call; a new resolver is built per
export because the skeleton may change between calls.
"""

import logging
from collections import namedtuple
from typing import Dict, Optional

from ..errors import MalformedSkeleton
from .sg_classes import Node

_log = logging.getLogger("model_export.skeleton")

BoneMatrices = namedtuple("BoneMatrices", ["transform", "inverse"])


class BoneMatrixResolver:
    """Computes world and inverse bind matrices for bones of one skeleton."""

    def __init__(self, skeleton, max_depth=1024):
        self.skeleton = skeleton
        self.max_depth = max_depth
        self._world_cache: Dict[int, object] = {}

    def bone_matrix(self, bone_idx):
        """Parent-relative transform of a bone."""
        return self.skeleton.bones[bone_idx].local_matrix()

    def world_matrix(self, bone_idx):
        """Accumulated transform from the root down to this bone."""
        cached = self._world_cache.get(bone_idx)
        if cached is not None:
            return cached.copy()

        # Collect the ancestor chain leaf -> root
        chain = []
        seen = set()
        idx = bone_idx
        bones = self.skeleton.bones
        while idx != -1:
            if idx in seen:
                raise MalformedSkeleton(
                    f"Bone '{bones[bone_idx].name}' has a cyclic parent chain")
            if idx < 0 or idx >= len(bones):
                raise MalformedSkeleton(
                    f"Bone '{bones[bone_idx].name}' references missing "
                    f"parent index {idx}")
            if len(chain) >= self.max_depth:
                raise MalformedSkeleton(
                    f"Bone '{bones[bone_idx].name}' exceeds max depth "
                    f"{self.max_depth}")
            seen.add(idx)
            chain.append(idx)
            idx = bones[idx].parent_index

        matrix = None
        for idx in reversed(chain):
            local = bones[idx].local_matrix()
            matrix = local if matrix is None else matrix @ local

        self._world_cache[bone_idx] = matrix
        return matrix.copy()

    def inverse_bind_matrix(self, bone_idx):
        """Inverse of the bone's rest-pose world transform."""
        from mathutils import Matrix

        world = self.world_matrix(bone_idx)
        try:
            return world.inverted()
        except ValueError:
            _log.warning("Bone '%s' has a singular world matrix; "
                         "using identity inverse bind matrix",
                         self.skeleton.bones[bone_idx].name)
            return Matrix.Identity(4)

    def calculate_inverse_matrix(self, bone_idx) -> BoneMatrices:
        """World transform and its inverse for one bone."""
        return BoneMatrices(self.world_matrix(bone_idx),
                            self.inverse_bind_matrix(bone_idx))


class SkeletonGraphBuilder:
    """Builds scene-graph nodes for every bone of a skeleton.

    Usage:
        builder = SkeletonGraphBuilder(resolver)
        skel_root = builder.build(scene.root_node)
    """

    def __init__(self, resolver: Optional[BoneMatrixResolver],
                 root_name="skeleton_root"):
        self.resolver = resolver
        self.root_name = root_name

    def build(self, parent_node: Node) -> Node:
        """Attach a skeleton_root node to parent_node and fill it with bones.

        Returns the skeleton_root node (empty when there are no bones).

        Raises:
            MalformedSkeleton: if any bone cannot be reached from a root
                bone (cycle or dangling parent index) or the hierarchy is
                deeper than the resolver's max_depth.
        """
        root = parent_node.add_child(Node(self.root_name))

        skeleton = self.resolver.skeleton if self.resolver is not None else None
        if skeleton is None or not skeleton.bones:
            return root

        _log.debug("Building %d bone nodes", len(skeleton.bones))

        children_of: Dict[int, list] = {}
        for i, bone in enumerate(skeleton.bones):
            children_of.setdefault(bone.parent_index, []).append(i)

        visited = set()
        max_depth = self.resolver.max_depth

        # (bone index, parent node, depth); reversed pushes keep skeleton order
        stack = [(i, root, 1) for i in reversed(children_of.get(-1, []))]
        while stack:
            bone_idx, parent, depth = stack.pop()
            if bone_idx in visited:
                raise MalformedSkeleton(
                    f"Bone '{skeleton.bones[bone_idx].name}' visited twice")
            if depth > max_depth:
                raise MalformedSkeleton(
                    f"Skeleton deeper than {max_depth} bones")
            visited.add(bone_idx)

            bone = skeleton.bones[bone_idx]
            node = parent.add_child(
                Node(bone.name, transform=self.resolver.bone_matrix(bone_idx)))

            for child_idx in reversed(children_of.get(bone_idx, [])):
                stack.append((child_idx, node, depth + 1))

        if len(visited) != len(skeleton.bones):
            orphans = [skeleton.bones[i].name
                       for i in range(len(skeleton.bones)) if i not in visited]
            raise MalformedSkeleton(
                f"Bones not reachable from a root bone: {orphans}")

        return root
