import math

import pytest
from mathutils import Matrix

from model_export.errors import MalformedSkeleton
from model_export.model.generic import Bone, Skeleton
from model_export.scene_graph.sg_classes import Node
from model_export.scene_graph.sg_skeleton import BoneMatrixResolver, SkeletonGraphBuilder


def _assert_matrix_close(a, b):
    for r in range(4):
        for c in range(4):
            assert a[r][c] == pytest.approx(b[r][c], abs=1e-5)


def _parent_name(node):
    return node.parent.name if node.parent is not None else None


class TestBoneMatrixResolver:

    def test_world_matrix_accumulates_parent_chain(self, pelvis_spine):
        resolver = BoneMatrixResolver(pelvis_spine)
        world = resolver.world_matrix(1)
        assert tuple(world.translation) == pytest.approx((0.0, 1.5, 0.0))

    def test_inverse_bind_is_inverse_of_world(self, pelvis_spine):
        resolver = BoneMatrixResolver(pelvis_spine)
        inv = resolver.inverse_bind_matrix(1)
        assert tuple(inv.translation) == pytest.approx((0.0, -1.5, 0.0))
        _assert_matrix_close(inv @ resolver.world_matrix(1), Matrix.Identity(4))

    def test_rotated_parent_moves_child(self):
        skeleton = Skeleton(bones=[
            Bone("root", rotation=(0.0, 0.0, math.pi / 2)),
            Bone("arm", parent_index=0, position=(1.0, 0.0, 0.0)),
        ])
        world = BoneMatrixResolver(skeleton).world_matrix(1)
        assert tuple(world.translation) == pytest.approx((0.0, 1.0, 0.0), abs=1e-6)

    def test_quaternion_rotation_matches_euler(self):
        half = math.sqrt(0.5)
        euler = Bone("a", rotation=(0.0, 0.0, math.pi / 2))
        quat = Bone("b", rotation=(half, 0.0, 0.0, half))
        _assert_matrix_close(euler.local_matrix(), quat.local_matrix())

    def test_calculate_inverse_matrix_returns_both(self, pelvis_spine):
        result = BoneMatrixResolver(pelvis_spine).calculate_inverse_matrix(0)
        _assert_matrix_close(result.transform @ result.inverse, Matrix.Identity(4))

    def test_singular_world_falls_back_to_identity(self):
        skeleton = Skeleton(bones=[Bone("flat", scale=(1.0, 0.0, 1.0))])
        inv = BoneMatrixResolver(skeleton).inverse_bind_matrix(0)
        _assert_matrix_close(inv, Matrix.Identity(4))

    def test_cyclic_parent_chain_raises(self):
        skeleton = Skeleton(bones=[Bone("a", parent_index=1), Bone("b", parent_index=0)])
        with pytest.raises(MalformedSkeleton):
            BoneMatrixResolver(skeleton).world_matrix(0)

    def test_missing_parent_raises(self):
        skeleton = Skeleton(bones=[Bone("a", parent_index=5)])
        with pytest.raises(MalformedSkeleton):
            BoneMatrixResolver(skeleton).world_matrix(0)


class TestSkeletonGraphBuilder:

    def test_pelvis_spine_hierarchy(self, pelvis_spine):
        scene_root = Node("RootNode")
        root = SkeletonGraphBuilder(BoneMatrixResolver(pelvis_spine)).build(scene_root)

        assert root.name == "skeleton_root"
        assert scene_root.children == [root]
        assert [c.name for c in root.children] == ["pelvis"]
        pelvis = root.children[0]
        assert [c.name for c in pelvis.children] == ["spine"]
        assert pelvis.children[0].children == []

    def test_nodes_carry_forward_local_matrix(self, pelvis_spine):
        resolver = BoneMatrixResolver(pelvis_spine)
        root = SkeletonGraphBuilder(resolver).build(Node("RootNode"))
        spine = root.find("spine")
        assert tuple(spine.transform.translation) == pytest.approx((0.0, 0.5, 0.0))
        _assert_matrix_close(spine.world_transform(), resolver.world_matrix(1))

    def test_node_count_and_edges_mirror_parent_indices(self):
        bones = [
            Bone("hips"),
            Bone("spine", 0), Bone("leg_l", 0), Bone("leg_r", 0),
            Bone("chest", 1), Bone("foot_l", 2),
            Bone("prop_root"),
            Bone("neck", 4),
        ]
        skeleton = Skeleton(bones=bones)
        root = SkeletonGraphBuilder(BoneMatrixResolver(skeleton)).build(Node("RootNode"))

        nodes = [n for n in root.walk() if n is not root]
        assert len(nodes) == len(bones)
        by_name = {n.name: n for n in nodes}
        for bone in bones:
            expected = bones[bone.parent_index].name if bone.parent_index != -1 \
                else "skeleton_root"
            assert _parent_name(by_name[bone.name]) == expected

        # children keep skeleton order
        assert [c.name for c in by_name["hips"].children] == ["spine", "leg_l", "leg_r"]
        assert [c.name for c in root.children] == ["hips", "prop_root"]

    def test_empty_skeleton_yields_empty_root(self):
        root = SkeletonGraphBuilder(BoneMatrixResolver(Skeleton())).build(Node("RootNode"))
        assert root.name == "skeleton_root"
        assert root.children == []

    def test_no_skeleton_yields_empty_root(self):
        root = SkeletonGraphBuilder(None).build(Node("RootNode"))
        assert root.children == []

    def test_cycle_detached_from_roots_raises(self):
        skeleton = Skeleton(bones=[
            Bone("root"),
            Bone("a", parent_index=2),
            Bone("b", parent_index=1),
        ])
        with pytest.raises(MalformedSkeleton):
            SkeletonGraphBuilder(BoneMatrixResolver(skeleton)).build(Node("RootNode"))

    def test_self_parent_raises(self):
        skeleton = Skeleton(bones=[Bone("root"), Bone("loop", parent_index=1)])
        with pytest.raises(MalformedSkeleton):
            SkeletonGraphBuilder(BoneMatrixResolver(skeleton)).build(Node("RootNode"))

    def test_depth_guard(self):
        skeleton = Skeleton(bones=[Bone("a"), Bone("b", 0), Bone("c", 1)])
        resolver = BoneMatrixResolver(skeleton, max_depth=2)
        with pytest.raises(MalformedSkeleton):
            SkeletonGraphBuilder(resolver).build(Node("RootNode"))

    def test_deep_chain_does_not_recurse(self):
        bones = [Bone("b0")] + [Bone(f"b{i}", i - 1) for i in range(1, 3000)]
        resolver = BoneMatrixResolver(Skeleton(bones=bones), max_depth=5000)
        root = SkeletonGraphBuilder(resolver).build(Node("RootNode"))
        assert sum(1 for _ in root.walk()) == 3001
