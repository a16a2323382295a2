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

"""Transformation tensor fields for a classified coupled interface.

Converts a tagged :class:`~coupledmesh.coupling.classification.TransformResult`
into the tensor fields consumed by coupled-patch code:

- ``forward_t``: owner-to-neighbour rotation, shape (1, 3, 3), or (0, 3, 3)
  when the sides are parallel.
- ``reverse_t``: its inverse (transpose), same shape as ``forward_t``.
- ``separation``: owner-to-neighbour offset, shape (0, 3), (1, 3) or
  (n_faces, 3).

An ``UNKNOWN`` classification is never turned into an identity transform; it
raises :class:`~coupledmesh.errors.ClassificationError`.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import torch
from jaxtyping import Float

from coupledmesh.coupling.classification import TransformResult, classify_transform
from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import ClassificationError

if TYPE_CHECKING:
    from coupledmesh.face_set import FaceSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouplingTransform:
    """Forward/reverse tensors and separation between two coupled sides.

    The neighbour side is obtained from the owner side as
    ``x_neighbour = forward_t @ x_owner + separation``; an empty
    ``forward_t`` stands for the identity and an empty ``separation`` for a
    zero offset.
    """

    relation: TransformType
    forward_t: torch.Tensor  # shape: (0 or 1, 3, 3)
    reverse_t: torch.Tensor  # shape: (0 or 1, 3, 3)
    separation: torch.Tensor  # shape: (0, 1 or n_faces, 3)

    @property
    def parallel(self) -> bool:
        """Are the coupled planes parallel (no rotation needed)?"""
        return len(self.forward_t) == 0

    @property
    def separated(self) -> bool:
        """Are the coupled planes separated by an offset?"""
        return len(self.separation) > 0

    @classmethod
    def from_result(cls, result: TransformResult) -> "CouplingTransform":
        """Build tensor fields from a classification result.

        Raises
        ------
        ClassificationError
            If the result is ``UNKNOWN``.
        """
        if result.relation is TransformType.UNKNOWN:
            raise ClassificationError(TransformType.UNKNOWN, result.reason)

        if result.rotation is None:
            empty = result.separation.new_zeros((0, 3, 3))
            return cls(
                relation=result.relation,
                forward_t=empty,
                reverse_t=empty,
                separation=result.separation,
            )

        return cls(
            relation=result.relation,
            forward_t=result.rotation.unsqueeze(0),
            reverse_t=result.rotation.T.contiguous().unsqueeze(0),
            separation=result.separation,
        )

    def _offsets_for(self, n_points: int, face_ids: torch.Tensor | None):
        if not self.separated:
            return None
        if len(self.separation) == 1:
            return self.separation[0]
        if face_ids is None or len(face_ids) != n_points:
            raise ValueError(
                "Per-face separation requires the face index of every point; "
                "use faces_to_owner_frame() for face sets."
            )
        return self.separation[face_ids]

    def to_neighbour_frame(
        self,
        points: Float[torch.Tensor, "n 3"],
        face_ids: torch.Tensor | None = None,
    ) -> Float[torch.Tensor, "n 3"]:
        """Map owner-side positions onto the neighbour side.

        Parameters
        ----------
        points : torch.Tensor
            Positions on the owner side, shape (n, 3).
        face_ids : torch.Tensor | None
            Face index of each position, required only for per-face
            separation.
        """
        result = points
        if not self.parallel:
            result = result @ self.forward_t[0].T
        offsets = self._offsets_for(len(points), face_ids)
        if offsets is not None:
            result = result + offsets
        return result

    def to_owner_frame(
        self,
        points: Float[torch.Tensor, "n 3"],
        face_ids: torch.Tensor | None = None,
    ) -> Float[torch.Tensor, "n 3"]:
        """Map neighbour-side positions back onto the owner side.

        Inverse of :meth:`to_neighbour_frame`.
        """
        result = points
        offsets = self._offsets_for(len(points), face_ids)
        if offsets is not None:
            result = result - offsets
        if not self.parallel:
            result = result @ self.reverse_t[0].T
        return result

    def faces_to_owner_frame(self, face_set: "FaceSet") -> "FaceSet":
        """Map a neighbour-side face set into the owner frame.

        With a per-face separation each face is moved by its own offset, so
        points shared between faces are first duplicated (one copy per face
        vertex). Face order, winding and anchors are preserved.
        """
        from coupledmesh.face_set import FaceSet
        from coupledmesh.utilities._face_list import FaceList

        if len(self.separation) <= 1:
            return face_set.move_points(self.to_owner_frame(face_set.points))

        if len(self.separation) != face_set.n_faces:
            raise ValueError(
                f"Per-face separation has {len(self.separation)} entries but the "
                f"face set has {face_set.n_faces} faces."
            )

        face_ids, labels = face_set.faces.expand_to_pairs()
        points = self.to_owner_frame(face_set.points[labels], face_ids=face_ids)
        faces = FaceList(
            offsets=face_set.faces.offsets,
            indices=torch.arange(len(labels), device=labels.device),
        )
        return FaceSet(points=points, faces=faces)


def calc_transform_tensors(
    cf: Float[torch.Tensor, "n_faces 3"],
    cr: Float[torch.Tensor, "n_faces 3"],
    nf: Float[torch.Tensor, "n_faces 3"],
    nr: Float[torch.Tensor, "n_faces 3"],
    small_dist: Float[torch.Tensor, " n_faces"] | float,
    abs_tol: float | None = None,
    transform: TransformType | str = TransformType.UNKNOWN,
) -> CouplingTransform:
    """Calculate the transformation tensors between two coupled sides.

    If ``transform`` is ``UNKNOWN`` a rotational relation is tried first,
    then a translational one. See
    :func:`~coupledmesh.coupling.classification.classify_transform` for the
    parameters.

    Returns
    -------
    CouplingTransform
        Forward/reverse tensors and separation.

    Raises
    ------
    ClassificationError
        If the sides are neither rotational nor translational images within
        tolerance, or the forced relation does not hold.
    """
    transform = TransformType.from_name(transform)
    result = classify_transform(cf, cr, nf, nr, small_dist, abs_tol, transform)
    if result.relation is TransformType.UNKNOWN:
        raise ClassificationError(transform, result.reason)
    return CouplingTransform.from_result(result)
