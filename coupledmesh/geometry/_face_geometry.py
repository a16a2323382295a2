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

"""Per-face geometric quantities for polygonal faces.

All functions operate on a ragged :class:`~coupledmesh.utilities._face_list.FaceList`
plus a point tensor, and are fully vectorized: per-vertex contributions are
gathered with ``expand_to_pairs`` and reduced back onto faces with
``index_add_`` / ``scatter_reduce_``.

Polygon centres and area vectors use a triangle fan about the vertex average,
so non-planar and non-convex faces get the same centre regardless of which
vertex is the anchor.
"""

import warnings

import torch

from coupledmesh.utilities._face_list import FaceList
from coupledmesh.utilities._tolerances import safe_eps


def _check_non_empty(faces: FaceList) -> None:
    if faces.n_faces > 0 and bool((faces.counts == 0).any()):
        empty = torch.where(faces.counts == 0)[0]
        raise ValueError(
            f"Found {len(empty)} faces without vertices; face geometry is undefined.\n"
            f"Problem faces: {empty.tolist()[:10]}"
        )


def _vertex_average(faces: FaceList, points: torch.Tensor) -> torch.Tensor:
    """Arithmetic mean of the vertices of each face, shape (n_faces, 3)."""
    face_ids, labels = faces.expand_to_pairs()
    sums = torch.zeros(
        (faces.n_faces, points.shape[-1]), dtype=points.dtype, device=points.device
    )
    sums.index_add_(0, face_ids, points[labels])
    return sums / faces.counts.clamp(min=1).unsqueeze(-1).to(points.dtype)


def _fan_triangles(
    faces: FaceList, points: torch.Tensor
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
    """Decompose every face into a fan of triangles about its vertex average.

    Returns
    -------
    tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]
        ``(face_ids, tri_area_vectors, tri_centres, vertex_average)`` where the
        first three have one row per face vertex (one triangle per edge).
    """
    face_ids, labels = faces.expand_to_pairs()
    average = _vertex_average(faces, points)

    p0 = average[face_ids]
    p1 = points[labels]
    p2 = points[faces.next_indices()]

    tri_area_vectors = 0.5 * torch.linalg.cross(p1 - p0, p2 - p0, dim=-1)
    tri_centres = (p0 + p1 + p2) / 3.0
    return face_ids, tri_area_vectors, tri_centres, average


def calc_face_area_vectors(faces: FaceList, points: torch.Tensor) -> torch.Tensor:
    """Compute the area vector (area times unit normal) of every face.

    Parameters
    ----------
    faces : FaceList
        Polygonal faces.
    points : torch.Tensor
        Point coordinates, shape (n_points, 3).

    Returns
    -------
    torch.Tensor
        Shape (n_faces, 3). The direction follows the right-hand rule over the
        face winding.
    """
    _check_non_empty(faces)
    face_ids, tri_area_vectors, _, _ = _fan_triangles(faces, points)

    area_vectors = torch.zeros(
        (faces.n_faces, 3), dtype=points.dtype, device=points.device
    )
    area_vectors.index_add_(0, face_ids, tri_area_vectors)
    return area_vectors


def calc_face_centres(faces: FaceList, points: torch.Tensor) -> torch.Tensor:
    """Compute the area-weighted centre of every face.

    Each face is split into triangles ``(average, v_i, v_{i+1})``; the face
    centre is the mean of the triangle centres weighted by triangle area.
    Faces with (numerically) zero area fall back to the vertex average.

    Parameters
    ----------
    faces : FaceList
        Polygonal faces.
    points : torch.Tensor
        Point coordinates, shape (n_points, 3).

    Returns
    -------
    torch.Tensor
        Shape (n_faces, 3).
    """
    _check_non_empty(faces)
    face_ids, tri_area_vectors, tri_centres, average = _fan_triangles(faces, points)

    tri_areas = tri_area_vectors.norm(dim=-1)

    weighted = torch.zeros_like(average)
    weighted.index_add_(0, face_ids, tri_areas.unsqueeze(-1) * tri_centres)
    total_area = torch.zeros(faces.n_faces, dtype=points.dtype, device=points.device)
    total_area.index_add_(0, face_ids, tri_areas)

    degenerate = total_area <= safe_eps(points.dtype)
    if bool(degenerate.any()):
        warnings.warn(
            f"{int(degenerate.sum())} faces have zero area; using the vertex "
            f"average as their centre.",
            stacklevel=2,
        )

    safe_area = torch.where(degenerate, torch.ones_like(total_area), total_area)
    centres = weighted / safe_area.unsqueeze(-1)
    return torch.where(degenerate.unsqueeze(-1), average, centres)


def calc_face_tol(
    faces: FaceList,
    points: torch.Tensor,
    face_centres: torch.Tensor,
) -> torch.Tensor:
    """Calculate a typical length scale per face.

    The tolerance is the maximum distance from the face centre to any of the
    face vertices. Multiplied by a relative match tolerance it gives the
    absolute distance within which two faces (or two anchors) are considered
    coincident.

    Parameters
    ----------
    faces : FaceList
        Polygonal faces. Every face must have at least one vertex.
    points : torch.Tensor
        Point coordinates, shape (n_points, 3).
    face_centres : torch.Tensor
        Precomputed face centres, shape (n_faces, 3).

    Returns
    -------
    torch.Tensor
        Shape (n_faces,), non-negative.

    Raises
    ------
    ValueError
        If any face has no vertices, or if ``face_centres`` does not have one
        row per face.
    """
    _check_non_empty(faces)
    if face_centres.shape[0] != faces.n_faces:
        raise ValueError(
            f"Expected one centre per face ({faces.n_faces}), got {face_centres.shape=}"
        )

    face_ids, labels = faces.expand_to_pairs()
    distances = (points[labels] - face_centres[face_ids]).norm(dim=-1)

    tolerances = torch.zeros(faces.n_faces, dtype=points.dtype, device=points.device)
    tolerances.scatter_reduce_(0, face_ids, distances, reduce="amax")
    return tolerances


def get_anchor_points(faces: FaceList, points: torch.Tensor) -> torch.Tensor:
    """Get the position of vertex 0 (the anchor) of every face.

    Returns
    -------
    torch.Tensor
        Shape (n_faces, 3).
    """
    return points[faces.anchor_indices]
