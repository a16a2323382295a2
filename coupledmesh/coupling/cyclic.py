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

"""Cyclic (periodic) patches.

A cyclic patch holds both sides of a periodic interface in one face set: the
first half of the faces is coupled, face by face, to the second half. The
halves are related by a rotation (rotational periodicity), a translation
(translational periodicity), or a rotation followed by an offset.
"""

import logging
from pathlib import Path

import torch

from coupledmesh.coupling.classification import (
    TransformResult,
    _separation_field,
    estimate_axial_rotation,
)
from coupledmesh.coupling.ordering import FaceOrdering, order_faces
from coupledmesh.coupling.patch import CoupledPatch, PatchCoupling
from coupledmesh.coupling.tensors import CouplingTransform
from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import ClassificationError, FaceMatchError
from coupledmesh.face_set import FaceSet
from coupledmesh.io.io_obj import write_match_failure

logger = logging.getLogger(__name__)


def _split_halves(face_set: FaceSet) -> tuple[FaceSet, FaceSet]:
    if face_set.n_faces % 2 != 0:
        raise ValueError(
            f"A cyclic patch needs an even number of faces, got {face_set.n_faces}."
        )
    half = face_set.n_faces // 2
    return face_set.slice_faces(slice(0, half)), face_set.slice_faces(slice(half, None))


def _representative(half: FaceSet) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Area-weighted centre, mean unit normal and mean tolerance of a half."""
    areas = half.face_areas
    total_area = areas.sum()
    if total_area > 0:
        centre = (half.face_centres * areas.unsqueeze(-1)).sum(dim=0) / total_area
    else:
        centre = half.face_centres.mean(dim=0)

    normal = half.face_area_vectors.sum(dim=0)
    normal = normal / normal.norm().clamp(min=torch.finfo(normal.dtype).tiny)
    return centre.unsqueeze(0), normal.unsqueeze(0), half.face_tolerances.mean()


class CyclicPatch(CoupledPatch):
    """A periodic patch whose first half couples to its second half.

    Parameters
    ----------
    name : str
        Patch name.
    face_set : FaceSet
        All faces of the patch; the first ``size // 2`` faces form one side
        and the remaining faces the other.
    start : int
        Global index of the first face.
    index : int
        Position of the patch in its boundary.
    transform : TransformType | str
        Relation hint between the halves.
    match_tol : float | None
        Relative match tolerance.
    abs_tol : float | None
        Absolute tolerance on unit normals and tensor entries.
    diagnostics_dir : str | Path | None
        If set, failed orderings are dumped there as OBJ files before the
        error propagates.
    rotation_axis : torch.Tensor | None
        Axis of rotational periodicity, shape (3,). Used by
        :meth:`init_order`; inferred from the halves when None, which
        requires the halves to be related by a pure rotation.
    rotation_centre : torch.Tensor | None
        A point on the rotation axis, shape (3,). Needed only when the face
        normals lie along the axis.

    Examples
    --------
    >>> patch = CyclicPatch("periodic", face_set)  # doctest: +SKIP
    >>> patch.calc_geometry()  # doctest: +SKIP
    >>> patch.separation  # doctest: +SKIP
    tensor([[0., 0., 5.]])
    """

    def __init__(
        self,
        name: str,
        face_set: FaceSet,
        start: int = 0,
        index: int = 0,
        transform: TransformType | str = TransformType.UNKNOWN,
        match_tol: float | None = None,
        abs_tol: float | None = None,
        diagnostics_dir: str | Path | None = None,
        rotation_axis: torch.Tensor | None = None,
        rotation_centre: torch.Tensor | None = None,
    ):
        super().__init__(
            name,
            start,
            face_set.n_faces,
            index=index,
            transform=transform,
            match_tol=match_tol,
            abs_tol=abs_tol,
        )
        _split_halves(face_set)
        self.face_set = face_set
        self.diagnostics_dir = None if diagnostics_dir is None else Path(diagnostics_dir)
        self.order_transform: CouplingTransform | None = None

        dtype = face_set.points.dtype
        self.rotation_axis = (
            None if rotation_axis is None else torch.as_tensor(rotation_axis, dtype=dtype)
        )
        self.rotation_centre = (
            None
            if rotation_centre is None
            else torch.as_tensor(rotation_centre, dtype=dtype)
        )
        if self.rotation_axis is not None and self.rotation_axis.shape != (3,):
            raise ValueError(
                f"rotation_axis must have shape (3,), got {self.rotation_axis.shape=}"
            )
        if self.rotation_centre is not None and self.rotation_centre.shape != (3,):
            raise ValueError(
                f"rotation_centre must have shape (3,), got {self.rotation_centre.shape=}"
            )

    @property
    def half_size(self) -> int:
        return self.size // 2

    def halves(self) -> tuple[FaceSet, FaceSet]:
        """The two coupled sides, each with ``half_size`` faces."""
        return _split_halves(self.face_set)

    ### Lifecycle

    def init_geometry(self) -> None:
        if self.coupling is not None:
            self.coupling.invalidate()

    def calc_geometry(self) -> None:
        owner, neighbour = self.halves()
        if self.coupling is None:
            self.coupling = PatchCoupling(
                owner,
                neighbour,
                transform=self.hint,
                match_tol=self.match_tol,
                abs_tol=self.abs_tol,
            )
        else:
            self.coupling.update(owner, neighbour)

        transform = self._transform()
        logger.debug(
            "Cyclic patch %r: %s, parallel=%s, separated=%s",
            self.name,
            transform.relation.name,
            transform.parallel,
            transform.separated,
        )

    def init_move_points(self, points: torch.Tensor) -> None:
        self.face_set = self.face_set.move_points(points)
        if self.coupling is not None:
            self.coupling.invalidate()

    def move_points(self, points: torch.Tensor) -> None:
        if points is not self.face_set.points:
            self.face_set = self.face_set.move_points(points)
        self.calc_geometry()

    def init_update_mesh(self) -> None:
        self.order_transform = None
        if self.coupling is not None:
            self.coupling.invalidate()

    def update_mesh(self) -> None:
        self.calc_geometry()

    ### Ordering

    def init_order(self, candidate: FaceSet) -> None:
        """Estimate one representative transform between the candidate halves.

        The halves of ``candidate`` are in arbitrary order, so they are
        reduced to a single area-weighted centre and mean normal each. Unless
        the patch is translational, the rotation between the two is resolved
        about :attr:`rotation_axis` (or an axis inferred from the pair) with
        :func:`~coupledmesh.coupling.classification.estimate_axial_rotation`.

        Raises
        ------
        ClassificationError
            If no rotation axis or angle can be resolved, or the halves are
            not related by a transform of the requested kind.
        """
        owner, neighbour = _split_halves(candidate)
        if owner.n_faces == 0:
            empty = owner.points.new_zeros((0, 3))
            self.order_transform = self.calc_transform_tensors(
                empty, empty, empty, empty, 0.0
            )
            return

        cf, nf, tol_f = _representative(owner)
        cr, nr, tol_r = _representative(neighbour)
        small_dist = self.match_tol * torch.minimum(tol_f, tol_r)

        rotation = None
        if self.hint is not TransformType.TRANSLATIONAL:
            try:
                rotation = estimate_axial_rotation(
                    cf[0],
                    cr[0],
                    nf[0],
                    nr[0],
                    small_dist,
                    abs_tol=self.abs_tol,
                    axis=self.rotation_axis,
                    centre=self.rotation_centre,
                )
            except ClassificationError as exc:
                logger.error("Patch %r: %s", self.name, exc)
                raise
        if rotation is None:
            self.order_transform = self.calc_transform_tensors(cf, cr, nf, nr, small_dist)
            return

        if self.rotation_centre is None:
            offset = cr[0] - rotation @ cf[0]
        else:
            centre = self.rotation_centre.to(device=cf.device)
            offset = centre - rotation @ centre
        self.order_transform = CouplingTransform.from_result(
            TransformResult(
                relation=TransformType.ROTATIONAL,
                rotation=rotation,
                separation=_separation_field(offset.unsqueeze(0), small_dist.reshape(1)),
            )
        )
        logger.debug(
            "Cyclic patch %r: ordering rotation about %s",
            self.name,
            "the given axis" if self.rotation_axis is not None else "the inferred axis",
        )

    def order(self, candidate: FaceSet) -> FaceOrdering:
        """Order the second half of ``candidate`` onto the first half.

        The first half keeps its order and anchors. The second half is mapped
        into the first half's frame and matched face by face.

        Raises
        ------
        RuntimeError
            If :meth:`init_order` has not been called.
        FaceMatchError
            If the halves cannot be matched.
        """
        if self.order_transform is None:
            raise RuntimeError(
                f"init_order() must be called on patch {self.name!r} before order()."
            )
        owner, neighbour = _split_halves(candidate)
        half = owner.n_faces
        mapped = self.order_transform.faces_to_owner_frame(neighbour)

        try:
            half_ordering = order_faces(owner, mapped, self.match_tol)
        except FaceMatchError as exc:
            if self.diagnostics_dir is not None:
                write_match_failure(self.diagnostics_dir, self.name, owner, mapped, exc)
            raise

        device = half_ordering.face_map.device
        face_map = torch.cat(
            [torch.arange(half, device=device), half_ordering.face_map + half]
        )
        rotation = torch.cat(
            [torch.zeros(half, dtype=torch.int64, device=device), half_ordering.rotation]
        )
        return FaceOrdering(
            face_map=face_map, rotation=rotation, changed=half_ordering.changed
        )
