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

"""Processor boundary patches.

A processor patch is one side of an interface between two parts of a
decomposed mesh. Both sides hold geometrically coincident faces; one side
(the *owner*) defines the face order and the other side (the *neighbour*)
reorders its faces to match.

Moving data between the two sides is the caller's job. Each side publishes
what the other needs (:attr:`ProcessorPatch.geometry_data` after
:meth:`~ProcessorPatch.init_geometry`, :attr:`ProcessorPatch.order_data`
after :meth:`~ProcessorPatch.init_order`) and receives the other side's data
through :meth:`~ProcessorPatch.receive_geometry` and
:meth:`~ProcessorPatch.receive_order_data`.
"""

import logging
from pathlib import Path

import torch
from tensordict import TensorDict

from coupledmesh.coupling.ordering import (
    FaceOrdering,
    order_to_reference,
    ordering_reference,
)
from coupledmesh.coupling.patch import CoupledPatch, PatchCoupling
from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import FaceMatchError
from coupledmesh.face_set import FaceSet
from coupledmesh.io.io_obj import write_match_failure

logger = logging.getLogger(__name__)


class ProcessorPatch(CoupledPatch):
    """One side of a processor-processor boundary.

    Parameters
    ----------
    name : str
        Patch name.
    face_set : FaceSet
        The faces of this side.
    owner : bool
        Whether this side defines the face order.
    start : int
        Global index of the first face.
    index : int
        Position of the patch in its boundary.
    transform : TransformType | str
        Relation hint between the two sides.
    match_tol : float | None
        Relative match tolerance.
    abs_tol : float | None
        Absolute tolerance on unit normals and tensor entries.
    diagnostics_dir : str | Path | None
        If set, failed orderings on the neighbour side are dumped there as
        OBJ files before the error propagates.
    """

    def __init__(
        self,
        name: str,
        face_set: FaceSet,
        owner: bool,
        start: int = 0,
        index: int = 0,
        transform: TransformType | str = TransformType.UNKNOWN,
        match_tol: float | None = None,
        abs_tol: float | None = None,
        diagnostics_dir: str | Path | None = None,
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
        self.face_set = face_set
        self.owner = owner
        self.diagnostics_dir = None if diagnostics_dir is None else Path(diagnostics_dir)

        self.geometry_data: FaceSet | None = None
        self.order_data: TensorDict | None = None
        self._neighbour_geometry: FaceSet | None = None
        self._neighbour_order_data: TensorDict | None = None

    @property
    def neighbour(self) -> bool:
        """Does this side reorder its faces to match the other side?"""
        return not self.owner

    ### Data exchange

    def receive_geometry(self, face_set: FaceSet) -> None:
        """Receive the other side's faces (published by its ``init_geometry``)."""
        if face_set.n_faces != self.size:
            raise ValueError(
                f"Patch {self.name!r} has {self.size} faces but received "
                f"geometry for {face_set.n_faces}."
            )
        self._neighbour_geometry = face_set

    def receive_order_data(self, data: TensorDict) -> None:
        """Receive the owner side's ordering data (published by its ``init_order``)."""
        self._neighbour_order_data = data

    ### Lifecycle

    def init_geometry(self) -> None:
        self.geometry_data = self.face_set.strip_caches()
        if self.coupling is not None:
            self.coupling.invalidate()

    def calc_geometry(self) -> None:
        if self._neighbour_geometry is None:
            raise RuntimeError(
                f"Patch {self.name!r} has not received the neighbouring geometry; "
                f"call receive_geometry() before calc_geometry()."
            )
        if self.coupling is None:
            self.coupling = PatchCoupling(
                self.face_set,
                self._neighbour_geometry,
                transform=self.hint,
                match_tol=self.match_tol,
                abs_tol=self.abs_tol,
            )
        else:
            self.coupling.update(self.face_set, self._neighbour_geometry)

        transform = self._transform()
        logger.debug(
            "Processor patch %r: %s, parallel=%s, separated=%s",
            self.name,
            transform.relation.name,
            transform.parallel,
            transform.separated,
        )

    def init_move_points(self, points: torch.Tensor) -> None:
        self.face_set = self.face_set.move_points(points)
        self.init_geometry()

    def move_points(self, points: torch.Tensor) -> None:
        if points is not self.face_set.points:
            self.face_set = self.face_set.move_points(points)
        self.calc_geometry()

    def init_update_mesh(self) -> None:
        self.order_data = None
        self._neighbour_order_data = None
        self.init_geometry()

    def update_mesh(self) -> None:
        self.calc_geometry()

    ### Ordering

    def init_order(self, candidate: FaceSet) -> None:
        """Publish the owner's ordering data; the neighbour publishes nothing."""
        if self.owner:
            self.order_data = ordering_reference(candidate)
        else:
            self.order_data = None

    def order(self, candidate: FaceSet) -> FaceOrdering:
        """Order ``candidate`` to match the owner side.

        The owner side never reorders. The neighbour side matches its faces
        against the received owner ordering data.

        Raises
        ------
        RuntimeError
            On the neighbour side, if no ordering data has been received.
        FaceMatchError
            If the faces cannot be matched.
        """
        if self.owner:
            n = candidate.n_faces
            device = candidate.points.device
            return FaceOrdering(
                face_map=torch.arange(n, device=device),
                rotation=torch.zeros(n, dtype=torch.int64, device=device),
                changed=False,
            )

        if self._neighbour_order_data is None:
            raise RuntimeError(
                f"Patch {self.name!r} has not received the owner's ordering data; "
                f"call receive_order_data() before order()."
            )

        try:
            return order_to_reference(
                self._neighbour_order_data, candidate, self.match_tol
            )
        except FaceMatchError as exc:
            if self.diagnostics_dir is not None:
                write_match_failure(
                    self.diagnostics_dir,
                    self.name,
                    self._neighbour_order_data,
                    candidate,
                    exc,
                )
            raise
