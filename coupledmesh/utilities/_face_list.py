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

"""Ragged polygonal face connectivity stored with offsets-indices encoding.

Coupled interfaces are made of arbitrary polygons (triangles, quads, and
general n-gons mixed in one patch), so faces cannot be stored as a dense
``(n_faces, n_vertices)`` tensor.  :class:`FaceList` stores them the same way
a ragged adjacency list is stored: a flat ``indices`` array of point labels
and an ``offsets`` array delimiting each face.

The first vertex of each face is its *anchor*; the vertex order (winding)
defines the face normal.
"""

from collections.abc import Sequence

import torch
from tensordict import tensorclass


@tensorclass
class FaceList:
    """Polygonal faces stored with offset-indices encoding.

    Attributes:
        offsets: Indices into the indices array marking the start of each face.
            Shape (n_faces + 1,), dtype int64. The i-th face's vertices are
            indices[offsets[i]:offsets[i+1]].
        indices: Flattened array of all point labels.
            Shape (total_vertices,), dtype int64.

    Examples
    --------
        >>> # A quad followed by a triangle
        >>> faces = FaceList(
        ...     offsets=torch.tensor([0, 4, 7]),
        ...     indices=torch.tensor([0, 1, 2, 3, 1, 4, 2]),
        ... )
        >>> faces.to_list()
        [[0, 1, 2, 3], [1, 4, 2]]
        >>> faces.counts.tolist()
        [4, 3]
    """

    offsets: torch.Tensor  # shape: (n_faces + 1,), dtype: int64
    indices: torch.Tensor  # shape: (total_vertices,), dtype: int64

    def __post_init__(self):
        if not torch.compiler.is_compiling():
            if len(self.offsets) < 1:
                raise ValueError(
                    f"Offsets array must have length >= 1 (n_faces + 1), but got {len(self.offsets)=}. "
                    f"Even for 0 faces, offsets should be [0]."
                )
            if torch.is_floating_point(self.offsets) or torch.is_floating_point(
                self.indices
            ):
                raise TypeError(
                    f"`offsets` and `indices` must have int-like dtypes, but got "
                    f"{self.offsets.dtype=} and {self.indices.dtype=}."
                )
            if self.offsets[0].item() != 0:
                raise ValueError(
                    f"First offset must be 0, but got {self.offsets[0].item()=}."
                )
            last_offset = self.offsets[-1].item()
            indices_length = len(self.indices)
            if last_offset != indices_length:
                raise ValueError(
                    f"Last offset must equal length of indices, but got "
                    f"{last_offset=} != {indices_length=}."
                )
            if len(self.offsets) > 1 and bool((self.counts < 0).any()):
                raise ValueError("Offsets must be non-decreasing.")

    def to_list(self) -> list[list[int]]:
        """Convert the faces to a ragged list-of-lists representation.

        Returns
        -------
        list[list[int]]
            ``result[i]`` holds the point labels of face ``i`` in winding order.
        """
        offsets_np = self.offsets.cpu().numpy()
        indices_np = self.indices.cpu().numpy()

        return [
            indices_np[offsets_np[i] : offsets_np[i + 1]].tolist()
            for i in range(len(offsets_np) - 1)
        ]

    @property
    def n_faces(self) -> int:
        """Number of faces."""
        return len(self.offsets) - 1

    @property
    def n_total_vertices(self) -> int:
        """Total number of face-vertex entries across all faces."""
        return len(self.indices)

    @property
    def counts(self) -> torch.Tensor:
        """Number of vertices of each face, shape (n_faces,)."""
        return self.offsets[1:] - self.offsets[:-1]

    @property
    def anchor_indices(self) -> torch.Tensor:
        """Point label of the anchor (first) vertex of each face.

        Raises
        ------
        ValueError
            If any face has no vertices.
        """
        if self.n_faces > 0 and bool((self.counts == 0).any()):
            empty = torch.where(self.counts == 0)[0]
            raise ValueError(
                f"Faces without vertices have no anchor: {empty.tolist()[:10]}"
            )
        return self.indices[self.offsets[:-1]]

    def expand_to_pairs(self) -> tuple[torch.Tensor, torch.Tensor]:
        """Expand to (face_idx, point_label) pairs, one per face vertex.

        Returns
        -------
        tuple[torch.Tensor, torch.Tensor]
            ``(face_indices, point_labels)``, both shape (n_total_vertices,).

        Examples
        --------
            >>> faces = FaceList(
            ...     offsets=torch.tensor([0, 3, 6]),
            ...     indices=torch.tensor([0, 1, 2, 2, 1, 3]),
            ... )
            >>> face_ids, labels = faces.expand_to_pairs()
            >>> face_ids.tolist()
            [0, 0, 0, 1, 1, 1]
        """
        device = self.offsets.device

        if self.n_total_vertices == 0:
            return (
                torch.tensor([], dtype=torch.int64, device=device),
                self.indices,
            )

        positions = torch.arange(
            self.n_total_vertices, dtype=torch.int64, device=device
        )
        face_indices = torch.searchsorted(self.offsets, positions, right=True) - 1

        return face_indices, self.indices

    def local_positions(self) -> torch.Tensor:
        """Position of every face-vertex entry within its own face.

        Returns
        -------
        torch.Tensor
            Shape (n_total_vertices,). Entry ``k`` is ``k - offsets[face(k)]``.
        """
        face_indices, _ = self.expand_to_pairs()
        positions = torch.arange(
            self.n_total_vertices, dtype=torch.int64, device=self.offsets.device
        )
        return positions - self.offsets[face_indices]

    def next_indices(self) -> torch.Tensor:
        """Point label of the following vertex (cyclically) for every entry.

        Returns
        -------
        torch.Tensor
            Shape (n_total_vertices,). For face ``[a, b, c]`` the entries are
            ``[b, c, a]``.
        """
        face_indices, _ = self.expand_to_pairs()
        if len(face_indices) == 0:
            return self.indices
        starts = self.offsets[face_indices]
        counts = self.counts[face_indices]
        local = self.local_positions()
        return self.indices[starts + (local + 1) % counts]

    def select_faces(self, face_ids: torch.Tensor) -> "FaceList":
        """Return the faces selected (and ordered) by ``face_ids``.

        Parameters
        ----------
        face_ids : torch.Tensor
            Face indices, shape (n_selected,). Repeats are allowed.

        Returns
        -------
        FaceList
            New face list whose i-th face is face ``face_ids[i]`` of ``self``.
        """
        device = self.offsets.device
        face_ids = torch.as_tensor(face_ids, dtype=torch.int64, device=device)

        counts = self.counts[face_ids]
        new_offsets = torch.zeros(len(face_ids) + 1, dtype=torch.int64, device=device)
        new_offsets[1:] = torch.cumsum(counts, dim=0)

        total = int(new_offsets[-1])
        if total == 0:
            return FaceList(offsets=new_offsets, indices=self.indices[:0])

        ### Map each new position back to its position in the old indices array
        positions = torch.arange(total, dtype=torch.int64, device=device)
        new_face = torch.searchsorted(new_offsets, positions, right=True) - 1
        old_positions = self.offsets[face_ids][new_face] + (
            positions - new_offsets[new_face]
        )

        return FaceList(offsets=new_offsets, indices=self.indices[old_positions])

    def rotate_vertices(self, shifts: torch.Tensor | int) -> "FaceList":
        """Cyclically shift the vertex list of every face.

        Shifting follows :func:`torch.roll`: with a shift of ``r`` the new
        vertex ``j`` is the old vertex ``(j - r) mod n``.  A shift of ``-1``
        therefore makes the old second vertex the new anchor.

        Parameters
        ----------
        shifts : torch.Tensor | int
            One shift per face, shape (n_faces,), or a single shift for all.

        Returns
        -------
        FaceList
            Face list with identical offsets and rotated vertex lists.
        """
        if self.n_total_vertices == 0:
            return FaceList(offsets=self.offsets, indices=self.indices)

        device = self.offsets.device
        shifts = torch.as_tensor(shifts, dtype=torch.int64, device=device)
        if shifts.ndim == 0:
            shifts = shifts.expand(self.n_faces)

        face_indices, _ = self.expand_to_pairs()
        starts = self.offsets[face_indices]
        counts = self.counts[face_indices]
        local = self.local_positions()

        source = starts + torch.remainder(local - shifts[face_indices], counts)
        return FaceList(offsets=self.offsets, indices=self.indices[source])

    def reverse_winding(self) -> "FaceList":
        """Reverse the winding of every face, keeping each anchor in place.

        Face ``[a, b, c, d]`` becomes ``[a, d, c, b]``: the normal flips but
        the anchor vertex is unchanged.
        """
        if self.n_total_vertices == 0:
            return FaceList(offsets=self.offsets, indices=self.indices)

        face_indices, _ = self.expand_to_pairs()
        starts = self.offsets[face_indices]
        counts = self.counts[face_indices]
        local = self.local_positions()

        source = starts + torch.remainder(-local, counts)
        return FaceList(offsets=self.offsets, indices=self.indices[source])


def build_face_list(
    faces: Sequence[Sequence[int]] | torch.Tensor,
    device: torch.device | str | None = None,
) -> FaceList:
    """Build a :class:`FaceList` from nested sequences or a dense tensor.

    Parameters
    ----------
    faces : Sequence[Sequence[int]] | torch.Tensor
        Either a ragged list of point-label lists, or a dense integer tensor
        of shape (n_faces, n_vertices_per_face).
    device : torch.device | str | None
        Target device.

    Returns
    -------
    FaceList
        Face list with one entry per input face, vertex order preserved.

    Examples
    --------
        >>> build_face_list([[0, 1, 2, 3], [1, 4, 2]]).to_list()
        [[0, 1, 2, 3], [1, 4, 2]]
    """
    if isinstance(faces, torch.Tensor):
        if faces.ndim != 2:
            raise ValueError(
                f"Dense faces must have shape (n_faces, n_vertices), got {faces.shape=}"
            )
        faces = faces.to(device=device) if device is not None else faces
        n_faces, n_verts = faces.shape
        offsets = torch.arange(
            n_faces + 1, dtype=torch.int64, device=faces.device
        ) * n_verts
        return FaceList(offsets=offsets, indices=faces.reshape(-1).to(torch.int64))

    counts = torch.tensor([len(f) for f in faces], dtype=torch.int64, device=device)
    offsets = torch.zeros(len(faces) + 1, dtype=torch.int64, device=device)
    offsets[1:] = torch.cumsum(counts, dim=0)
    indices = torch.tensor(
        [label for face in faces for label in face], dtype=torch.int64, device=device
    )
    return FaceList(offsets=offsets, indices=indices)
