# SPDX-FileCopyrightText: Copyright (c) 2023 - 2026 NVIDIA CORPORATION & AFFILIATES.
# SPDX-FileCopyrightText: All rights reserved.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for face matching, anchor alignment and patch lookup."""

import pytest
import torch

from coupledmesh import FaceSet
from coupledmesh.coupling.ordering import (
    FaceOrdering,
    apply_face_ordering,
    get_rotation,
    match_faces,
    order_faces,
    order_to_reference,
    ordering_reference,
    which_patch,
)
from coupledmesh.coupling.tensors import calc_transform_tensors
from coupledmesh.errors import FaceMatchError


def _permuted(face_set: FaceSet, permutation: torch.Tensor, shifts=0) -> FaceSet:
    """Face ``k`` of the result is face ``permutation[k]`` of the input, rolled."""
    faces = face_set.faces.select_faces(permutation).rotate_vertices(shifts)
    return FaceSet(points=face_set.points, faces=faces)


class TestGetRotation:
    @pytest.fixture
    def square(self):
        points = torch.tensor(
            [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]],
            dtype=torch.float64,
        )
        return points

    @pytest.mark.parametrize("k", [0, 1, 2, 3])
    def test_shifted_face(self, square, k):
        """A face shifted so vertex k comes first needs rotation k."""
        face = torch.roll(torch.tensor([0, 1, 2, 3]), -k)
        r = get_rotation(square, face, square[0], tol=1e-6)
        assert r == k
        assert torch.roll(face, r)[0].item() == 0

    def test_no_vertex_within_tolerance(self, square):
        anchor = torch.tensor([0.5, 0.5, 0.0], dtype=torch.float64)
        assert get_rotation(square, [0, 1, 2, 3], anchor, tol=1e-3) == -1

    def test_list_face(self, square):
        assert get_rotation(square, [2, 3, 0, 1], square[0], tol=1e-6) == 2

    def test_empty_face_raises(self, square):
        with pytest.raises(ValueError, match="without vertices"):
            get_rotation(square, [], square[0], tol=1e-6)


class TestMatchFaces:
    def test_recovers_permutation(self, quad_grid, device):
        owner = quad_grid(4, 3, device=device)
        permutation = torch.randperm(owner.n_faces, generator=torch.Generator().manual_seed(0))
        candidate = _permuted(owner, permutation.to(device))

        face_map = match_faces(
            owner.face_centres,
            owner.face_tolerances,
            candidate.face_centres,
            candidate.face_tolerances,
        )
        # Candidate face k is owner face permutation[k]
        assert face_map.tolist() == permutation.tolist()
        assert face_map.device.type == device

    def test_size_mismatch(self, quad_grid):
        owner = quad_grid(2, 2)
        with pytest.raises(ValueError, match="same number of faces"):
            match_faces(
                owner.face_centres,
                owner.face_tolerances,
                owner.face_centres[:3],
                owner.face_tolerances[:3],
            )

    def test_unmatched(self, quad_grid):
        owner = quad_grid(3, 1)
        candidate = owner.translate([0.0, 0.0, 0.1])
        with pytest.raises(FaceMatchError) as excinfo:
            match_faces(
                owner.face_centres,
                owner.face_tolerances,
                candidate.face_centres,
                candidate.face_tolerances,
            )
        error = excinfo.value
        assert error.unmatched.tolist() == [0, 1, 2]
        assert len(error.ambiguous) == 0
        torch.testing.assert_close(
            error.nearest_distances,
            torch.full((3,), 0.1, dtype=torch.float64),
        )
        assert "3 unmatched faces" in str(error)

    def test_ambiguous_duplicate_candidates(self):
        """Two candidates at the same position make both claimants ambiguous."""
        centres = torch.tensor([[0.0, 0.0, 0.0], [5.0, 0.0, 0.0]], dtype=torch.float64)
        candidates = torch.tensor([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]], dtype=torch.float64)
        tols = torch.ones(2, dtype=torch.float64)
        with pytest.raises(FaceMatchError) as excinfo:
            match_faces(centres, tols, candidates, tols)
        error = excinfo.value
        assert error.ambiguous.tolist() == [0]
        assert error.unmatched.tolist() == [1]
        assert error.failed_faces.tolist() == [0, 1]

    def test_ambiguous_shared_candidate(self):
        """A candidate claimed by two owner faces makes both ambiguous."""
        centres = torch.tensor([[0.0, 0.0, 0.0], [1e-5, 0.0, 0.0]], dtype=torch.float64)
        candidates = torch.tensor([[0.0, 0.0, 0.0], [9.0, 0.0, 0.0]], dtype=torch.float64)
        tols = torch.ones(2, dtype=torch.float64)
        with pytest.raises(FaceMatchError) as excinfo:
            match_faces(centres, tols, candidates, tols)
        assert excinfo.value.ambiguous.tolist() == [0, 1]

    def test_tighter_match_tol_rejects(self, quad_grid):
        owner = quad_grid(2, 2)
        candidate = owner.translate([1e-4, 0.0, 0.0])
        args = (
            owner.face_centres,
            owner.face_tolerances,
            candidate.face_centres,
            candidate.face_tolerances,
        )
        assert match_faces(*args).tolist() == [0, 1, 2, 3]
        with pytest.raises(FaceMatchError):
            match_faces(*args, match_tol=1e-5)

    def test_empty(self):
        empty = torch.zeros(0, 3, dtype=torch.float64)
        tols = torch.zeros(0, dtype=torch.float64)
        assert match_faces(empty, tols, empty, tols).shape == (0,)


class TestOrderFaces:
    def test_identity_is_unchanged(self, quad_grid):
        owner = quad_grid(3, 2)
        ordering = order_faces(owner, owner)
        assert isinstance(ordering, FaceOrdering)
        assert not ordering.changed
        assert ordering.face_map.tolist() == list(range(6))
        assert ordering.rotation.tolist() == [0] * 6

    def test_recovers_permutation_and_rotation(self, quad_grid, device):
        owner = quad_grid(3, 3, device=device)
        permutation = torch.randperm(9, generator=torch.Generator().manual_seed(3))
        shifts = torch.tensor([0, 1, 2, 3, -1, 5, 2, 0, 1])
        candidate = _permuted(owner, permutation.to(device), shifts.to(device))

        ordering = order_faces(owner, candidate)
        assert ordering.changed
        assert ordering.face_map.tolist() == permutation.tolist()
        # Candidate k sits at new index permutation[k] and was rolled by shifts[k]
        expected = torch.empty(9, dtype=torch.int64)
        expected[permutation] = torch.remainder(-shifts, 4)
        assert ordering.rotation.tolist() == expected.tolist()

        aligned = apply_face_ordering(candidate.faces, ordering)
        assert aligned.to_list() == owner.faces.to_list()

    def test_mirrored_candidate(self, quad_grid, mirror):
        """Opposite-side faces have reversed winding but still share anchors."""
        owner = quad_grid(2, 2)
        candidate = mirror(_permuted(owner, torch.tensor([3, 2, 1, 0]), shifts=1))

        ordering = order_faces(owner, candidate)
        aligned = apply_face_ordering(candidate.faces, ordering)
        assert aligned.anchor_indices.tolist() == owner.faces.anchor_indices.tolist()
        assert ordering.face_map.tolist() == [3, 2, 1, 0]

    def test_misaligned_anchor(self, quad_grid):
        owner = quad_grid(1, 1)
        # Same centre, but the square is rotated by 45 degrees: no shared vertex
        candidate = owner.rotate(torch.pi / 4, "z", center=[0.5, 0.5, 0.0])
        with pytest.raises(FaceMatchError) as excinfo:
            order_faces(owner, candidate)
        assert excinfo.value.misaligned.tolist() == [0]
        assert "misaligned" in str(excinfo.value)

    def test_cardinality_mismatch(self, quad_grid):
        with pytest.raises(ValueError, match="same number of faces"):
            order_faces(quad_grid(2, 2), quad_grid(3, 1).slice_faces(slice(0, 2)))

    def test_mixed_polygons(self):
        points = torch.tensor(
            [
                [0.0, 0.0, 0.0],
                [1.0, 0.0, 0.0],
                [1.0, 1.0, 0.0],
                [0.0, 1.0, 0.0],
                [2.0, 0.0, 0.0],
                [2.0, 1.0, 0.0],
                [2.5, 0.5, 0.0],
            ],
            dtype=torch.float64,
        )
        owner = FaceSet.from_faces(points, [[0, 1, 2, 3], [1, 4, 5, 2], [4, 6, 5]])
        candidate = FaceSet.from_faces(points, [[5, 4, 6], [0, 1, 2, 3], [2, 1, 4, 5]])

        ordering = order_faces(owner, candidate)
        assert ordering.face_map.tolist() == [2, 0, 1]
        assert ordering.rotation.tolist() == [0, 3, 2]
        assert apply_face_ordering(candidate.faces, ordering).to_list() == [
            [0, 1, 2, 3],
            [1, 4, 5, 2],
            [4, 6, 5],
        ]

    def test_scale_invariance(self, quad_grid):
        for spacing in (1e-6, 1e6):
            owner = quad_grid(3, 2, spacing=spacing)
            permutation = torch.tensor([5, 4, 3, 2, 1, 0])
            ordering = order_faces(owner, _permuted(owner, permutation, shifts=1))
            assert ordering.face_map.tolist() == permutation.tolist()
            assert ordering.rotation.tolist() == [3] * 6

    @pytest.mark.cuda
    def test_single_precision_on_cuda(self, quad_grid):
        owner = quad_grid(4, 4, device="cuda", dtype=torch.float32)
        permutation = torch.arange(15, -1, -1, device="cuda")
        ordering = order_faces(owner, _permuted(owner, permutation, shifts=2))
        assert ordering.face_map.device.type == "cuda"
        assert ordering.face_map.tolist() == permutation.tolist()
        assert ordering.rotation.tolist() == [2] * 16


class TestOrderToReference:
    def test_reference_data(self, quad_grid):
        owner = quad_grid(2, 1)
        reference = ordering_reference(owner)
        assert set(reference.keys()) == {"centres", "anchors", "tolerances"}
        assert reference.batch_size == torch.Size([2])

    def test_matches_order_faces(self, quad_grid):
        owner = quad_grid(3, 1)
        candidate = _permuted(owner, torch.tensor([2, 0, 1]), shifts=2)
        from_reference = order_to_reference(ordering_reference(owner), candidate)
        direct = order_faces(owner, candidate)
        assert torch.equal(from_reference.face_map, direct.face_map)
        assert torch.equal(from_reference.rotation, direct.rotation)


class TestEndToEnd:
    def test_separated_square(self):
        """Owner square at z=0, neighbour at z=5 with a different anchor."""
        points = torch.tensor(
            [
                [0.0, 0.0, 0.0],
                [1.0, 0.0, 0.0],
                [1.0, 1.0, 0.0],
                [0.0, 1.0, 0.0],
                [0.0, 0.0, 5.0],
                [1.0, 0.0, 5.0],
                [1.0, 1.0, 5.0],
                [0.0, 1.0, 5.0],
            ],
            dtype=torch.float64,
        )
        owner = FaceSet.from_faces(points, [[0, 1, 2, 3]])
        # Opposite-side winding [4, 7, 6, 5] rolled by -2
        neighbour = FaceSet.from_faces(points, [[6, 5, 4, 7]])

        coupling = calc_transform_tensors(
            owner.face_centres,
            neighbour.face_centres,
            owner.face_normals,
            neighbour.face_normals,
            1e-3 * owner.face_tolerances,
        )
        assert coupling.parallel
        torch.testing.assert_close(
            coupling.separation, torch.tensor([[0.0, 0.0, 5.0]], dtype=torch.float64)
        )

        ordering = order_faces(owner, coupling.faces_to_owner_frame(neighbour))
        assert ordering.face_map.tolist() == [0]
        assert ordering.rotation.tolist() == [2]
        assert apply_face_ordering(neighbour.faces, ordering).to_list() == [[4, 7, 6, 5]]


class TestWhichPatch:
    def test_scalar(self):
        starts = [0, 10, 25]
        assert which_patch(starts, 0) == 0
        assert which_patch(starts, 9) == 0
        assert which_patch(starts, 10) == 1
        assert which_patch(starts, 100) == 2
        assert isinstance(which_patch(starts, 12), int)

    def test_tensor(self):
        result = which_patch(torch.tensor([0, 10, 25]), torch.tensor([3, 24, 25]))
        assert result.tolist() == [0, 1, 2]

    def test_empty_patches_share_start(self):
        assert which_patch([0, 4, 4, 8], 5) == 2

    def test_before_first_start(self):
        with pytest.raises(ValueError, match="precedes"):
            which_patch([5, 10], 2)

    def test_unsorted(self):
        with pytest.raises(ValueError, match="sorted"):
            which_patch([0, 10, 5], 7)

    def test_empty_starts(self):
        with pytest.raises(ValueError, match="non-empty"):
            which_patch([], 0)
