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

"""Coupled patch interface.

A coupled patch is one boundary of a mesh whose faces are geometrically tied
to another set of faces: the other half of a cyclic patch, or the faces of a
processor boundary on another process. This module provides

- :class:`PatchCoupling`, which owns the two face sets of an interface and a
  lazily computed, invalidation-tracked :class:`CouplingTransform`, and
- :class:`CoupledPatch`, the abstract lifecycle every coupled patch follows
  (geometry, point motion, topology change and face ordering).

Concrete variants live in :mod:`coupledmesh.coupling.cyclic` and
:mod:`coupledmesh.coupling.processor`.
"""

import logging
from abc import ABC, abstractmethod

import torch
from tensordict import TensorDict

from coupledmesh.coupling.ordering import FaceOrdering
from coupledmesh.coupling.tensors import CouplingTransform, calc_transform_tensors
from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import ClassificationError
from coupledmesh.face_set import FaceSet
from coupledmesh.utilities._cache import clear_cached, get_cached, set_cached
from coupledmesh.utilities._tolerances import resolve_match_tol

logger = logging.getLogger(__name__)


class PatchCoupling:
    """The two sides of a coupled interface and the transform between them.

    Face ``i`` of ``owner`` is coupled to face ``i`` of ``neighbour``. The
    transform is computed on first access of :attr:`transform` and cached
    until :meth:`invalidate` is called.

    Parameters
    ----------
    owner : FaceSet
        Reference side.
    neighbour : FaceSet
        Coupled side, index-matched to ``owner``.
    transform : TransformType | str
        Relation hint. ``UNKNOWN`` detects rotational, then translational.
    match_tol : float | None
        Relative match tolerance; the per-pair matching distance is
        ``match_tol * min(owner tolerance, neighbour tolerance)``.
    abs_tol : float | None
        Absolute tolerance on unit normals and tensor entries.
    """

    def __init__(
        self,
        owner: FaceSet,
        neighbour: FaceSet,
        transform: TransformType | str = TransformType.UNKNOWN,
        match_tol: float | None = None,
        abs_tol: float | None = None,
    ):
        if owner.n_faces != neighbour.n_faces:
            raise ValueError(
                f"Coupled sides must have the same number of faces, got "
                f"{owner.n_faces} owner and {neighbour.n_faces} neighbour faces."
            )
        self.owner = owner
        self.neighbour = neighbour
        self.hint = TransformType.from_name(transform)
        self.match_tol = resolve_match_tol(match_tol)
        self.abs_tol = resolve_match_tol(abs_tol)

        self._data = TensorDict({}, batch_size=torch.Size([]))
        self._relation: TransformType | None = None
        self._stale = False

    @property
    def n_faces(self) -> int:
        return self.owner.n_faces

    @property
    def stale(self) -> bool:
        """Has the cached transform been invalidated and not yet recomputed?"""
        return self._stale

    @property
    def small_dist(self) -> torch.Tensor:
        """Matching distance per face pair, shape (n_faces,)."""
        return self.match_tol * torch.minimum(
            self.owner.face_tolerances, self.neighbour.face_tolerances
        )

    @property
    def transform(self) -> CouplingTransform:
        """The owner-to-neighbour transform, computed on first access.

        Raises
        ------
        ClassificationError
            If the sides are not related by the hinted (or any) transform.
        """
        if self._relation is None:
            result = calc_transform_tensors(
                self.owner.face_centres,
                self.neighbour.face_centres,
                self.owner.face_normals,
                self.neighbour.face_normals,
                self.small_dist,
                abs_tol=self.abs_tol,
                transform=self.hint,
            )
            set_cached(self._data, "forward_t", result.forward_t)
            set_cached(self._data, "reverse_t", result.reverse_t)
            set_cached(self._data, "separation", result.separation)
            self._relation = result.relation
            self._stale = False

        return CouplingTransform(
            relation=self._relation,
            forward_t=get_cached(self._data, "forward_t"),
            reverse_t=get_cached(self._data, "reverse_t"),
            separation=get_cached(self._data, "separation"),
        )

    def invalidate(self) -> None:
        """Drop the cached transform; it is recomputed on next access."""
        clear_cached(self._data)
        self._relation = None
        self._stale = True

    def update(
        self,
        owner: FaceSet | None = None,
        neighbour: FaceSet | None = None,
    ) -> None:
        """Replace one or both sides (e.g. after point motion) and invalidate."""
        if owner is not None:
            self.owner = owner
        if neighbour is not None:
            self.neighbour = neighbour
        if self.owner.n_faces != self.neighbour.n_faces:
            raise ValueError(
                f"Coupled sides must have the same number of faces, got "
                f"{self.owner.n_faces} owner and {self.neighbour.n_faces} "
                f"neighbour faces."
            )
        self.invalidate()

    def __repr__(self) -> str:
        relation = "pending" if self._relation is None else self._relation.name
        return (
            f"{self.__class__.__name__}(n_faces={self.n_faces}, "
            f"hint={self.hint.name}, relation={relation}, stale={self._stale})"
        )


class CoupledPatch(ABC):
    """Abstract base for patches whose faces are coupled to another face set.

    Subclasses implement the lifecycle hooks. Each ``init_*`` hook is the
    first half of a two-phase update (publish data, invalidate caches) and
    the matching hook without the prefix completes it.

    Parameters
    ----------
    name : str
        Patch name, used in log messages and diagnostic file names.
    start : int
        Global index of the first face of the patch.
    size : int
        Number of faces in the patch.
    index : int
        Position of the patch in its boundary.
    transform : TransformType | str
        Relation hint for the transform between the coupled sides.
    match_tol : float | None
        Relative match tolerance.
    abs_tol : float | None
        Absolute tolerance on unit normals and tensor entries.
    """

    def __init__(
        self,
        name: str,
        start: int,
        size: int,
        index: int = 0,
        transform: TransformType | str = TransformType.UNKNOWN,
        match_tol: float | None = None,
        abs_tol: float | None = None,
    ):
        if start < 0 or size < 0:
            raise ValueError(
                f"Patch {name!r} must have non-negative start and size, "
                f"got {start=} and {size=}."
            )
        self.name = name
        self.start = start
        self.size = size
        self.index = index
        self.hint = TransformType.from_name(transform)
        self.match_tol = resolve_match_tol(match_tol)
        self.abs_tol = resolve_match_tol(abs_tol)
        self.coupling: PatchCoupling | None = None

    @property
    def coupled(self) -> bool:
        """Is the patch coupled to another face set?"""
        return True

    ### Geometry accessors

    def _transform(self) -> CouplingTransform:
        if self.coupling is None:
            raise RuntimeError(
                f"Geometry of patch {self.name!r} has not been calculated; "
                f"call calc_geometry() first."
            )
        try:
            return self.coupling.transform
        except ClassificationError as exc:
            logger.error("Patch %r: %s", self.name, exc)
            raise

    @property
    def transform(self) -> CouplingTransform:
        """The transform between the coupled sides."""
        return self._transform()

    @property
    def separated(self) -> bool:
        """Are the coupled planes separated by an offset?"""
        return self._transform().separated

    @property
    def separation(self) -> torch.Tensor:
        """Owner-to-neighbour offset, shape (0, 1 or n_faces, 3)."""
        return self._transform().separation

    @property
    def parallel(self) -> bool:
        """Are the coupled planes parallel (no rotation)?"""
        return self._transform().parallel

    @property
    def forward_t(self) -> torch.Tensor:
        """Owner-to-neighbour rotation, shape (0 or 1, 3, 3)."""
        return self._transform().forward_t

    @property
    def reverse_t(self) -> torch.Tensor:
        """Neighbour-to-owner rotation, shape (0 or 1, 3, 3)."""
        return self._transform().reverse_t

    def calc_transform_tensors(
        self,
        cf: torch.Tensor,
        cr: torch.Tensor,
        nf: torch.Tensor,
        nr: torch.Tensor,
        small_dist: torch.Tensor | float,
        abs_tol: float | None = None,
        transform: TransformType | str | None = None,
    ) -> CouplingTransform:
        """Calculate transformation tensors using this patch's settings.

        ``abs_tol`` and ``transform`` default to the patch's own values.

        Raises
        ------
        ClassificationError
            If no transform of the requested kind relates the two sides.
        """
        try:
            return calc_transform_tensors(
                cf,
                cr,
                nf,
                nr,
                small_dist,
                abs_tol=self.abs_tol if abs_tol is None else abs_tol,
                transform=self.hint if transform is None else transform,
            )
        except ClassificationError as exc:
            logger.error("Patch %r: %s", self.name, exc)
            raise

    def in_patch(self, old_to_new: torch.Tensor, old_face_i: int) -> bool:
        """Does the renumbered face ``old_face_i`` land inside this patch?"""
        new_face_i = int(old_to_new[old_face_i])
        return self.start <= new_face_i < self.start + self.size

    ### Lifecycle hooks

    @abstractmethod
    def init_geometry(self) -> None:
        """Start the geometry calculation (publish data, reset state)."""

    @abstractmethod
    def calc_geometry(self) -> None:
        """Complete the geometry calculation."""

    @abstractmethod
    def init_move_points(self, points: torch.Tensor) -> None:
        """Start a point motion."""

    @abstractmethod
    def move_points(self, points: torch.Tensor) -> None:
        """Complete a point motion."""

    @abstractmethod
    def init_update_mesh(self) -> None:
        """Start a topology update."""

    @abstractmethod
    def update_mesh(self) -> None:
        """Complete a topology update."""

    ### Ordering hooks

    @abstractmethod
    def init_order(self, candidate: FaceSet) -> None:
        """Prepare to order ``candidate``, the new faces of this patch."""

    @abstractmethod
    def order(self, candidate: FaceSet) -> FaceOrdering:
        """Return the ordering that aligns ``candidate`` with its coupled side."""

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(name={self.name!r}, start={self.start}, "
            f"size={self.size}, index={self.index})"
        )
