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

from typing import TYPE_CHECKING, Any, Literal, Self, Sequence

import torch
import torch.nn.functional as F
from tensordict import TensorDict, tensorclass

from coupledmesh.geometry._face_geometry import (
    calc_face_area_vectors,
    calc_face_centres,
    calc_face_tol,
    get_anchor_points,
)
from coupledmesh.transformations.geometric import rotate, transform, translate
from coupledmesh.utilities._cache import CACHE_KEY, get_cached, set_cached
from coupledmesh.utilities._face_list import FaceList, build_face_list


@tensorclass
class FaceSet:
    r"""An ordered set of polygonal faces together with the points they reference.

    A ``FaceSet`` is one side of a coupled interface: the faces of a cyclic
    half, or the faces of a processor boundary as seen from one process. The
    two sides of an interface are numbered and oriented independently; the
    :mod:`coupledmesh.coupling` module establishes how they correspond.

    **Core Data Structure**

    - ``points``: Vertex coordinates with shape :math:`(N_p, 3)`.
    - ``faces``: A :class:`FaceList` of :math:`N_f` polygons, each with at
      least three vertices. The first vertex of each face is its *anchor*
      and the winding defines the outward normal.
    - ``face_data``: Per-face data, a ``TensorDict`` with batch size
      :math:`(N_f,)`.

    **Caching**

    Face centres, area vectors, normals, tolerances and anchor points are
    derived values. They are computed on first access and cached under the
    ``"_cache"`` key of ``face_data``. They are never authoritative: moving
    the points (:meth:`move_points`) or calling :meth:`strip_caches` returns
    a new ``FaceSet`` with an empty cache.

    Parameters
    ----------
    points : torch.Tensor
        Vertex coordinates with shape :math:`(N_p, 3)`. Must be floating-point.
    faces : FaceList
        Face connectivity.
    face_data : TensorDict, optional
        Per-face data. Created empty when omitted.

    Raises
    ------
    ValueError
        If ``points`` is not ``(N_p, 3)``, a face has fewer than three
        vertices, or a face references a point that does not exist.
    TypeError
        If ``points`` is not floating-point.

    Examples
    --------
    >>> import torch
    >>> from coupledmesh import FaceSet
    >>> points = torch.tensor([
    ...     [0.0, 0.0, 0.0],
    ...     [1.0, 0.0, 0.0],
    ...     [1.0, 1.0, 0.0],
    ...     [0.0, 1.0, 0.0],
    ... ])
    >>> face_set = FaceSet.from_faces(points, [[0, 1, 2, 3]])
    >>> face_set.face_normals
    tensor([[0., 0., 1.]])
    """

    points: torch.Tensor  # shape: (n_points, 3)
    faces: FaceList
    face_data: TensorDict | None = None

    def __post_init__(self):
        if self.face_data is None:
            self.face_data = TensorDict(
                {},
                batch_size=torch.Size([self.n_faces]),
                device=self.points.device,
            )

        ### Validate shapes and dtypes
        if not torch.compiler.is_compiling():
            if self.points.ndim != 2 or self.points.shape[-1] != 3:
                raise ValueError(
                    f"`points` must have shape (n_points, 3), but got {self.points.shape=}."
                )
            if not torch.is_floating_point(self.points):
                raise TypeError(
                    f"`points` must have a floating-point dtype, but got {self.points.dtype=}."
                )
            if self.n_faces > 0:
                too_small = self.faces.counts < 3
                if bool(too_small.any()):
                    bad = torch.where(too_small)[0]
                    raise ValueError(
                        f"Faces must have at least 3 vertices, but {len(bad)} do not.\n"
                        f"Problem faces: {bad.tolist()[:10]}"
                    )
                if bool(
                    (self.faces.indices < 0).any()
                    or (self.faces.indices >= self.n_points).any()
                ):
                    raise ValueError(
                        f"Face point labels must be in range [0, {self.n_points}), "
                        f"but got {self.faces.indices.min().item()=} and "
                        f"{self.faces.indices.max().item()=}."
                    )

    @classmethod
    def from_faces(
        cls,
        points: torch.Tensor,
        faces: Sequence[Sequence[int]] | torch.Tensor | FaceList,
    ) -> "FaceSet":
        """Construct from points and faces given as lists, a dense tensor or a FaceList."""
        if not isinstance(faces, FaceList):
            faces = build_face_list(faces, device=points.device)
        return cls(points=points, faces=faces)

    if TYPE_CHECKING:

        def to(self, *args: Any, **kwargs: Any) -> Self:
            """Move the face set and all attached data to a device or dtype."""
            ...

        def clone(self) -> Self:
            """Return a clone of this FaceSet."""
            ...

    @property
    def n_points(self) -> int:
        return self.points.shape[0]

    @property
    def n_faces(self) -> int:
        return self.faces.n_faces

    @property
    def face_centres(self) -> torch.Tensor:
        """Area-weighted centre of every face, shape (n_faces, 3).

        The result is cached in face_data["_cache"]["centres"].
        """
        cached = get_cached(self.face_data, "centres")
        if cached is None:
            cached = calc_face_centres(self.faces, self.points)
            set_cached(self.face_data, "centres", cached)
        return cached

    @property
    def face_area_vectors(self) -> torch.Tensor:
        """Area vector of every face, shape (n_faces, 3)."""
        cached = get_cached(self.face_data, "area_vectors")
        if cached is None:
            cached = calc_face_area_vectors(self.faces, self.points)
            set_cached(self.face_data, "area_vectors", cached)
        return cached

    @property
    def face_areas(self) -> torch.Tensor:
        """Area of every face, shape (n_faces,)."""
        return self.face_area_vectors.norm(dim=-1)

    @property
    def face_normals(self) -> torch.Tensor:
        """Unit normal of every face, shape (n_faces, 3).

        The orientation follows the right-hand rule over the face winding.
        The result is cached in face_data["_cache"]["normals"].
        """
        cached = get_cached(self.face_data, "normals")
        if cached is None:
            cached = F.normalize(self.face_area_vectors, dim=-1)
            set_cached(self.face_data, "normals", cached)
        return cached

    @property
    def face_tolerances(self) -> torch.Tensor:
        """Maximum centre-to-vertex distance of every face, shape (n_faces,).

        The result is cached in face_data["_cache"]["tolerances"].
        """
        cached = get_cached(self.face_data, "tolerances")
        if cached is None:
            cached = calc_face_tol(self.faces, self.points, self.face_centres)
            set_cached(self.face_data, "tolerances", cached)
        return cached

    @property
    def anchor_points(self) -> torch.Tensor:
        """Position of the anchor (first) vertex of every face, shape (n_faces, 3)."""
        cached = get_cached(self.face_data, "anchors")
        if cached is None:
            cached = get_anchor_points(self.faces, self.points)
            set_cached(self.face_data, "anchors", cached)
        return cached

    def slice_faces(self, face_ids: torch.Tensor | slice) -> "FaceSet":
        """Return a new FaceSet holding only the selected faces.

        Points are shared, not compacted. Cached values are not carried over.

        Parameters
        ----------
        face_ids : torch.Tensor | slice
            Face indices (or a slice) selecting and ordering the new faces.
        """
        if isinstance(face_ids, slice):
            face_ids = torch.arange(self.n_faces, device=self.points.device)[face_ids]
        face_ids = torch.as_tensor(face_ids, dtype=torch.int64, device=self.points.device)
        return FaceSet(
            points=self.points,
            faces=self.faces.select_faces(face_ids),
            face_data=self.face_data.exclude(CACHE_KEY)[face_ids],
        )

    def move_points(self, points: torch.Tensor) -> "FaceSet":
        """Return a new FaceSet with the same faces on moved points.

        All cached geometry is invalidated.

        Parameters
        ----------
        points : torch.Tensor
            New point coordinates, same shape as ``self.points``.
        """
        if points.shape != self.points.shape:
            raise ValueError(
                f"Moved points must keep the shape {tuple(self.points.shape)}, "
                f"but got {tuple(points.shape)}."
            )
        return FaceSet(
            points=points,
            faces=self.faces,
            face_data=self.face_data.exclude(CACHE_KEY),
        )

    def strip_caches(self) -> "FaceSet":
        """Return a new FaceSet with all cached values removed."""
        return FaceSet(
            points=self.points,
            faces=self.faces,
            face_data=self.face_data.exclude(CACHE_KEY),
        )

    def translate(self, offset: torch.Tensor | list | tuple) -> "FaceSet":
        """Translate the face set.

        Convenience wrapper for coupledmesh.transformations.translate().
        """
        return translate(self, offset)

    def rotate(
        self,
        angle: float,
        axis: torch.Tensor | list | tuple | Literal["x", "y", "z"],
        center: torch.Tensor | list | tuple | None = None,
    ) -> "FaceSet":
        """Rotate the face set about an axis by a specified angle (radians).

        Convenience wrapper for coupledmesh.transformations.rotate().
        """
        return rotate(self, angle, axis, center)

    def transform(self, matrix: torch.Tensor) -> "FaceSet":
        """Apply a linear transformation to the face set.

        Convenience wrapper for coupledmesh.transformations.transform().
        """
        return transform(self, matrix)


def _face_set_repr(self) -> str:
    return (
        f"{self.__class__.__name__}(n_points={self.n_points}, "
        f"n_faces={self.n_faces}, device={self.points.device})"
    )


FaceSet.__repr__ = _face_set_repr  # type: ignore
