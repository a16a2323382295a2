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

"""Tests for transform classification between coupled face sets.

Pairs are built from a known transform so the classification outcome is
known exactly: a rotation about z, a pure translation, a rotation followed by
an offset, and unrelated geometry.
"""

import math

import pytest
import torch

from coupledmesh.coupling.classification import (
    classify_transform,
    estimate_axial_rotation,
    estimate_rotation,
)
from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import ClassificationError
from coupledmesh.transformations import scale
from coupledmesh.transformations.geometric import _build_rotation_matrix


def _pairs(owner, neighbour, match_tol: float = 1e-3):
    small_dist = match_tol * torch.minimum(owner.face_tolerances, neighbour.face_tolerances)
    return (
        owner.face_centres,
        neighbour.face_centres,
        owner.face_normals,
        neighbour.face_normals,
        small_dist,
    )


def _rot_z(angle: float) -> torch.Tensor:
    return _build_rotation_matrix(
        angle, torch.tensor([0.0, 0.0, 1.0]), dtype=torch.float64
    )


class TestTransformType:
    def test_names(self):
        assert TransformType.from_name("rotational") is TransformType.ROTATIONAL
        assert TransformType.from_name("TRANSLATIONAL") is TransformType.TRANSLATIONAL
        assert TransformType.from_name(TransformType.UNKNOWN) is TransformType.UNKNOWN

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError):
            TransformType.from_name("sliding")


class TestRotational:
    @pytest.mark.parametrize("angle", [math.pi / 6, math.pi / 2, 2.5])
    def test_recovers_rotation(self, wedge_halves, angle):
        owner, neighbour = wedge_halves(n_faces=4, angle=angle)
        result = classify_transform(*_pairs(owner, neighbour))

        assert result.relation is TransformType.ROTATIONAL
        assert not result.parallel
        assert not result.separated
        torch.testing.assert_close(result.rotation, _rot_z(angle))

    def test_round_trip(self, wedge_halves):
        """forward then reverse maps owner centres back onto themselves."""
        owner, neighbour = wedge_halves()
        result = classify_transform(*_pairs(owner, neighbour))
        forward = owner.face_centres @ result.rotation.T
        torch.testing.assert_close(forward, neighbour.face_centres)
        torch.testing.assert_close(forward @ result.rotation, owner.face_centres)

    def test_rotation_with_offset(self, wedge_halves):
        owner, neighbour = wedge_halves(angle=math.pi / 3)
        offset = torch.tensor([0.0, 0.0, 2.5], dtype=torch.float64)
        neighbour = neighbour.translate(offset)
        result = classify_transform(*_pairs(owner, neighbour))

        assert result.relation is TransformType.ROTATIONAL
        assert result.separation.shape == (1, 3)
        torch.testing.assert_close(result.separation[0], offset)

    def test_single_face_pair(self, wedge_halves):
        """One pair only determines the normal; the minimal rotation is used."""
        owner, neighbour = wedge_halves(n_faces=1, angle=math.pi / 4)
        result = classify_transform(*_pairs(owner, neighbour))
        assert result.relation is TransformType.ROTATIONAL
        torch.testing.assert_close(
            (-owner.face_normals) @ result.rotation.T, neighbour.face_normals
        )

    def test_single_face_pair_half_turn(self, wedge_halves):
        """Antiparallel normals: the half-turn axis comes from the centres."""
        owner, neighbour = wedge_halves(n_faces=1, angle=math.pi)
        result = classify_transform(*_pairs(owner, neighbour))
        assert result.relation is TransformType.ROTATIONAL
        torch.testing.assert_close(result.rotation, _rot_z(math.pi))
        assert not result.separated

    def test_single_face_pair_half_turn_on_axis(self):
        """Coincident centres leave the half-turn axis undetermined."""
        centre = torch.tensor([[0.0, 0.0, 0.5]], dtype=torch.float64)
        normal = torch.tensor([[0.0, -1.0, 0.0]], dtype=torch.float64)
        result = classify_transform(centre, centre, normal, normal, 1e-3)
        assert result.relation is TransformType.UNKNOWN
        assert "undetermined" in result.reason

    def test_estimate_rotation_is_proper(self, wedge_halves):
        owner, neighbour = wedge_halves(angle=1.0)
        rotation = estimate_rotation(
            owner.face_centres,
            neighbour.face_centres,
            owner.face_normals,
            neighbour.face_normals,
        )
        torch.testing.assert_close(rotation.T @ rotation, torch.eye(3, dtype=torch.float64))
        assert torch.linalg.det(rotation) == pytest.approx(1.0)


class TestAxialRotation:
    @pytest.fixture
    def tilted_pair(self):
        """One tilted owner pair and its image under a rotation of pi/3 about z."""
        nf = torch.tensor([0.0, -1.0, 0.5], dtype=torch.float64)
        nf = nf / nf.norm()
        cf = torch.tensor([2.5, 0.25, 0.5], dtype=torch.float64)
        rotation = _rot_z(math.pi / 3)
        return cf, rotation @ cf, nf, rotation @ (-nf), rotation

    def test_inferred_axis(self, tilted_pair):
        cf, cr, nf, nr, expected = tilted_pair
        torch.testing.assert_close(estimate_axial_rotation(cf, cr, nf, nr), expected)

    def test_half_turn(self):
        nf = torch.tensor([0.0, -1.0, 0.0], dtype=torch.float64)
        cf = torch.tensor([2.0, 0.0, 0.5], dtype=torch.float64)
        rotation = _rot_z(math.pi)
        torch.testing.assert_close(
            estimate_axial_rotation(cf, rotation @ cf, nf, rotation @ (-nf)), rotation
        )

    def test_opposed_normals_need_no_rotation(self):
        n = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
        origin = torch.zeros(3, dtype=torch.float64)
        assert estimate_axial_rotation(origin, origin + 5.0 * n, n, -n) is None

    def test_coincident_centres_raise(self):
        nf = torch.tensor([0.0, -1.0, 0.0], dtype=torch.float64)
        centre = torch.tensor([0.0, 0.0, 0.5], dtype=torch.float64)
        with pytest.raises(ClassificationError, match="centres coincide"):
            estimate_axial_rotation(centre, centre, nf, nf)

    def test_explicit_axis_allows_axial_offset(self, tilted_pair):
        cf, cr, nf, nr, expected = tilted_pair
        z = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
        rotation = estimate_axial_rotation(cf, cr + 2.0 * z, nf, nr, axis=z)
        torch.testing.assert_close(rotation, expected)

    def test_inconsistent_axis_raises(self, tilted_pair):
        cf, cr, nf, nr, _ = tilted_pair
        x = torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
        with pytest.raises(ClassificationError, match="not related by a rotation"):
            estimate_axial_rotation(cf, cr, nf, nr, axis=x)

    def test_normals_along_axis_need_centre(self):
        z = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
        cf = torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
        rotation = _rot_z(math.pi / 2)
        with pytest.raises(ClassificationError, match="rotation centre"):
            estimate_axial_rotation(cf, rotation @ cf, z, -z, axis=z)

        result = estimate_axial_rotation(
            cf, rotation @ cf, z, -z, axis=z, centre=torch.zeros(3, dtype=torch.float64)
        )
        torch.testing.assert_close(result, rotation)


class TestTranslational:
    def test_single_separation(self, quad_grid, mirror):
        owner = quad_grid(3, 2)
        neighbour = mirror(owner.translate([0.0, 0.0, 5.0]))
        result = classify_transform(*_pairs(owner, neighbour))

        assert result.relation is TransformType.TRANSLATIONAL
        assert result.parallel
        assert result.separation.shape == (1, 3)
        torch.testing.assert_close(
            result.separation[0], torch.tensor([0.0, 0.0, 5.0], dtype=torch.float64)
        )

    def test_coincident_sides_have_no_separation(self, quad_grid, mirror):
        owner = quad_grid(2, 2)
        result = classify_transform(*_pairs(owner, mirror(owner)))
        assert result.relation is TransformType.TRANSLATIONAL
        assert result.parallel
        assert not result.separated

    def test_per_face_separation(self, quad_grid, mirror):
        owner = quad_grid(3, 1)
        neighbour = mirror(owner)
        # Lift each face by a different amount: faces share no points after this
        centres = neighbour.face_centres + torch.tensor(
            [[0.0, 0.0, 1.0], [0.0, 0.0, 2.0], [0.0, 0.0, 3.0]], dtype=torch.float64
        )
        result = classify_transform(
            owner.face_centres,
            centres,
            owner.face_normals,
            neighbour.face_normals,
            1e-3 * owner.face_tolerances,
        )
        assert result.relation is TransformType.TRANSLATIONAL
        assert result.separation.shape == (3, 3)
        expected = torch.tensor([1.0, 2.0, 3.0], dtype=torch.float64)
        torch.testing.assert_close(result.separation[:, 2], expected)

    def test_separation_sign_is_neighbour_minus_owner(self, quad_grid, mirror):
        owner = quad_grid(1, 1).translate([0.0, 0.0, 4.0])
        neighbour = mirror(quad_grid(1, 1))
        result = classify_transform(*_pairs(owner, neighbour))
        torch.testing.assert_close(
            result.separation[0], torch.tensor([0.0, 0.0, -4.0], dtype=torch.float64)
        )


class TestForcedRelation:
    def test_forced_translational_rejects_rotation(self, wedge_halves):
        owner, neighbour = wedge_halves()
        result = classify_transform(
            *_pairs(owner, neighbour), transform=TransformType.TRANSLATIONAL
        )
        assert result.relation is TransformType.UNKNOWN
        assert "opposite-facing" in result.reason

    def test_forced_rotational_on_parallel_planes(self, quad_grid, mirror):
        owner = quad_grid(2, 2)
        neighbour = mirror(owner.translate([0.0, 0.0, 1.0]))
        result = classify_transform(*_pairs(owner, neighbour), transform="rotational")
        assert result.relation is TransformType.ROTATIONAL
        assert result.rotation is None
        assert result.separation.shape == (1, 3)

    def test_auto_prefers_translational_for_parallel_planes(self, quad_grid, mirror):
        owner = quad_grid(2, 2)
        neighbour = mirror(owner.translate([1.0, 0.0, 0.0]))
        result = classify_transform(*_pairs(owner, neighbour))
        assert result.relation is TransformType.TRANSLATIONAL


class TestRejection:
    def test_unrelated_geometry(self, quad_grid, wedge_halves):
        owner, _ = wedge_halves(n_faces=4)
        neighbour = quad_grid(2, 2)
        result = classify_transform(*_pairs(owner, neighbour))
        assert result.relation is TransformType.UNKNOWN
        assert "rotational" in result.reason
        assert "translational" in result.reason

    def test_perturbed_centre_is_rejected(self, wedge_halves):
        owner, neighbour = wedge_halves(n_faces=4, angle=0.5)
        cf, cr, nf, nr, small_dist = _pairs(owner, neighbour)
        cr = cr.clone()
        cr[0, 2] += 0.3
        result = classify_transform(cf, cr, nf, nr, small_dist)
        assert result.relation is TransformType.UNKNOWN


class TestScaleInvariance:
    @pytest.mark.parametrize("factor", [1e-6, 1.0, 1e6])
    def test_same_outcome_at_any_scale(self, wedge_halves, factor):
        owner, neighbour = wedge_halves(n_faces=3, angle=0.4)
        owner, neighbour = scale(owner, factor), scale(neighbour, factor)
        result = classify_transform(*_pairs(owner, neighbour))
        assert result.relation is TransformType.ROTATIONAL
        torch.testing.assert_close(result.rotation, _rot_z(0.4))


class TestEdgeCases:
    def test_empty_input_unknown_hint(self):
        empty = torch.zeros(0, 3, dtype=torch.float64)
        result = classify_transform(empty, empty, empty, empty, 0.0)
        assert result.relation is TransformType.TRANSLATIONAL
        assert result.parallel
        assert not result.separated

    def test_empty_input_keeps_forced_hint(self):
        empty = torch.zeros(0, 3, dtype=torch.float64)
        result = classify_transform(
            empty, empty, empty, empty, 0.0, transform="rotational"
        )
        assert result.relation is TransformType.ROTATIONAL

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="shape of cf"):
            classify_transform(
                torch.zeros(2, 3),
                torch.zeros(3, 3),
                torch.zeros(2, 3),
                torch.zeros(2, 3),
                0.0,
            )

    def test_negative_small_dist(self):
        x = torch.zeros(1, 3)
        with pytest.raises(ValueError, match="non-negative"):
            classify_transform(x, x, x, x, -1.0)

    def test_small_dist_length(self):
        x = torch.zeros(2, 3)
        with pytest.raises(ValueError, match="one entry per face"):
            classify_transform(x, x, x, x, torch.zeros(3))
