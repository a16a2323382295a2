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

"""Pytest configuration and shared fixtures for coupledmesh tests.

Provides device parametrization helpers and small face-set generators used
throughout the test suite.
"""

import math

import pytest
import torch

from coupledmesh import FaceSet

### Pytest Hooks ###


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA (skipped if unavailable)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with 'cuda' if CUDA is not available."""
    if torch.cuda.is_available():
        return

    skip_cuda = pytest.mark.skip(reason="CUDA not available")
    for item in items:
        if "cuda" in item.keywords:
            item.add_marker(skip_cuda)


### Device Management ###


def get_available_devices() -> list[str]:
    """Get list of available compute devices for testing."""
    devices = ["cpu"]
    if torch.cuda.is_available():
        devices.append("cuda")
    return devices


@pytest.fixture(params=get_available_devices())
def device(request):
    """Parametrize a test over all available devices."""
    return request.param


### Face Set Generators ###


def make_quad_grid(
    nx: int,
    ny: int,
    spacing: float = 1.0,
    device: torch.device | str = "cpu",
    dtype: torch.dtype = torch.float64,
) -> FaceSet:
    """Planar grid of ``nx * ny`` unit quads on ``z = 0`` with normals along +z.

    Faces are numbered row by row; every face is wound counter-clockwise
    starting from its lower-left corner.
    """
    xs = torch.arange(nx + 1, dtype=dtype, device=device) * spacing
    ys = torch.arange(ny + 1, dtype=dtype, device=device) * spacing
    gx, gy = torch.meshgrid(xs, ys, indexing="xy")
    points = torch.stack(
        [gx.reshape(-1), gy.reshape(-1), torch.zeros_like(gx).reshape(-1)], dim=-1
    )

    faces = []
    for j in range(ny):
        for i in range(nx):
            p0 = j * (nx + 1) + i
            faces.append([p0, p0 + 1, p0 + nx + 2, p0 + nx + 1])
    return FaceSet.from_faces(points, torch.tensor(faces, device=device))


def mirror_faces(face_set: FaceSet) -> FaceSet:
    """Same faces with reversed winding (anchors kept): the opposite side."""
    return FaceSet(points=face_set.points, faces=face_set.faces.reverse_winding())


def concat_face_sets(first: FaceSet, second: FaceSet) -> FaceSet:
    """One face set holding the faces of ``first`` followed by those of ``second``."""
    from coupledmesh.utilities._face_list import FaceList

    points = torch.cat([first.points, second.points])
    offsets = torch.cat(
        [first.faces.offsets, second.faces.offsets[1:] + first.faces.offsets[-1]]
    )
    indices = torch.cat([first.faces.indices, second.faces.indices + first.n_points])
    return FaceSet(points=points, faces=FaceList(offsets=offsets, indices=indices))


def make_wedge_halves(
    n_faces: int = 3,
    angle: float = math.pi / 6,
    tilt: float = 0.0,
    device: torch.device | str = "cpu",
    dtype: torch.dtype = torch.float64,
) -> tuple[FaceSet, FaceSet]:
    """The two periodic sides of a wedge about the z axis.

    The owner side lies in the ``y = 0`` plane (x from 1 to 1 + n_faces,
    z from 0 to 1) with outward normal -y. The neighbour side is the owner
    rotated by ``angle`` about z, with reversed winding so its normal points
    out of the wedge as well. A non-zero ``tilt`` moves the top edge to
    ``y = tilt``, tilting the faces out of that plane so their normals gain a
    z component.
    """
    points = []
    for i in range(n_faces + 1):
        points.append([1.0 + i, 0.0, 0.0])
        points.append([1.0 + i, tilt, 1.0])
    points = torch.tensor(points, dtype=dtype, device=device)

    # Wound so the normal is -y: (x, z) counter-clockwise seen from -y
    faces = [[2 * i, 2 * i + 2, 2 * i + 3, 2 * i + 1] for i in range(n_faces)]
    owner = FaceSet.from_faces(points, faces)
    neighbour = mirror_faces(owner.rotate(angle, "z"))
    return owner, neighbour


@pytest.fixture
def quad_grid():
    """Factory fixture for :func:`make_quad_grid`."""
    return make_quad_grid


@pytest.fixture
def wedge_halves():
    """Factory fixture for :func:`make_wedge_halves`."""
    return make_wedge_halves


@pytest.fixture
def mirror():
    """Factory fixture for :func:`mirror_faces`."""
    return mirror_faces


@pytest.fixture
def concat():
    """Factory fixture for :func:`concat_face_sets`."""
    return concat_face_sets
