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

"""Face correspondence and anchor alignment between two coupled face sets.

Given an owner face set and a candidate face set that occupy the same
positions (any rotation/translation between the sides already applied by the
caller), compute:

- ``face_map``: for every candidate face (old index) the owner face it
  corresponds to (new index). A bijection over ``[0, n_faces)``.
- ``rotation``: for every new face, the number of positions the candidate's
  vertex list must be cyclically shifted (in the :func:`torch.roll` sense) so
  that its first vertex coincides with the owner's anchor.

Two faces correspond when their centres are within
``match_tol * min(tol_owner, tol_candidate)`` of each other, where the
per-face tolerance is the largest centre-to-vertex distance. The matching
must be total and unambiguous; failures raise
:class:`~coupledmesh.errors.FaceMatchError` with the offending face indices.
"""

import logging
from collections.abc import Sequence
from typing import NamedTuple

import torch
from tensordict import TensorDict

from coupledmesh.errors import FaceMatchError
from coupledmesh.face_set import FaceSet
from coupledmesh.utilities._face_list import FaceList
from coupledmesh.utilities._tolerances import resolve_match_tol, safe_eps

logger = logging.getLogger(__name__)

_MATCH_CHUNK_SIZE = 4096


class FaceOrdering(NamedTuple):
    """Result of ordering a candidate face set against an owner face set.

    Parameters
    ----------
    face_map : torch.Tensor
        Shape (n_faces,). ``face_map[old] = new``: candidate face ``old``
        becomes face ``new``, aligned with owner face ``new``.
    rotation : torch.Tensor
        Shape (n_faces,). For every new face, the cyclic shift (``torch.roll``
        convention) that brings the candidate anchor onto the owner anchor.
    changed : bool
        False iff ``face_map`` is the identity and every rotation is 0.
    """

    face_map: torch.Tensor
    rotation: torch.Tensor
    changed: bool


def get_rotation(
    points: torch.Tensor,
    face: torch.Tensor | Sequence[int],
    anchor: torch.Tensor,
    tol: float,
) -> int:
    """Get the number of vertices ``face`` needs to be rotated to align with ``anchor``.

    Returns the smallest ``r >= 0`` such that ``torch.roll(face, r)[0]`` is
    within ``tol`` of ``anchor``.

    Parameters
    ----------
    points : torch.Tensor
        Point coordinates, shape (n_points, 3).
    face : torch.Tensor | Sequence[int]
        Point labels of one face in winding order.
    anchor : torch.Tensor
        Target anchor position, shape (3,).
    tol : float
        Absolute distance tolerance.

    Returns
    -------
    int
        Rotation in ``[0, len(face))``, or ``-1`` if no vertex is within
        ``tol`` of the anchor.

    Raises
    ------
    ValueError
        If the face has no vertices.
    """
    face = torch.as_tensor(face, dtype=torch.int64, device=points.device)
    n = len(face)
    if n == 0:
        raise ValueError("Cannot align a face without vertices")

    distances = (points[face] - anchor).norm(dim=-1)
    within = torch.where(distances <= tol)[0]
    if len(within) == 0:
        return -1
    return int(((n - within) % n).min())


def _vertex_rotations(
    faces: FaceList,
    points: torch.Tensor,
    anchors: torch.Tensor,
    tols: torch.Tensor,
) -> torch.Tensor:
    """Vectorized :func:`get_rotation` over every face; -1 marks failures."""
    face_ids, labels = faces.expand_to_pairs()
    counts = faces.counts
    device = points.device

    if faces.n_faces == 0:
        return torch.zeros(0, dtype=torch.int64, device=device)

    distances = (points[labels] - anchors[face_ids]).norm(dim=-1)
    local = faces.local_positions()
    candidate_rotation = (counts[face_ids] - local) % counts[face_ids]

    no_match = torch.iinfo(torch.int64).max
    masked = torch.where(
        distances <= tols[face_ids],
        candidate_rotation,
        torch.full_like(candidate_rotation, no_match),
    )
    rotation = torch.full((faces.n_faces,), no_match, dtype=torch.int64, device=device)
    rotation.scatter_reduce_(0, face_ids, masked, reduce="amin")
    return torch.where(rotation == no_match, torch.full_like(rotation, -1), rotation)


def _pair_tolerances(
    owner_tols: torch.Tensor, candidate_tols: torch.Tensor, match_tol: float
) -> torch.Tensor:
    """``match_tol * min(tol_i, tol_j)``, floored so exact coincidence always matches."""
    pair_tol = match_tol * torch.minimum(owner_tols, candidate_tols)
    return pair_tol.clamp(min=safe_eps(pair_tol.dtype))


def _match_centres(
    owner_centres: torch.Tensor,
    owner_tols: torch.Tensor,
    candidate_centres: torch.Tensor,
    candidate_tols: torch.Tensor,
    match_tol: float,
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
    """Match owner centres to candidate centres without raising.

    Returns
    -------
    tuple
        ``(owner_to_candidate, unmatched, ambiguous, nearest_distances,
        nearest_candidates)``. ``owner_to_candidate`` holds -1 for failures.
    """
    n = owner_centres.shape[0]
    device = owner_centres.device

    n_hits = torch.zeros(n, dtype=torch.int64, device=device)
    first_hit = torch.zeros(n, dtype=torch.int64, device=device)
    claims = torch.zeros(n, dtype=torch.int64, device=device)
    nearest_distances = torch.zeros(n, dtype=owner_centres.dtype, device=device)
    nearest_candidates = torch.zeros(n, dtype=torch.int64, device=device)

    ### Brute-force distances, chunked over owner faces to bound memory
    for start in range(0, n, _MATCH_CHUNK_SIZE):
        stop = min(start + _MATCH_CHUNK_SIZE, n)
        distances = torch.cdist(
            owner_centres[start:stop],
            candidate_centres,
            compute_mode="donot_use_mm_for_euclid_dist",
        )
        pair_tol = _pair_tolerances(
            owner_tols[start:stop].unsqueeze(1),
            candidate_tols.unsqueeze(0),
            match_tol,
        )
        within = distances <= pair_tol

        n_hits[start:stop] = within.sum(dim=1)
        first_hit[start:stop] = within.int().argmax(dim=1)
        claims += within.sum(dim=0)
        nearest = distances.min(dim=1)
        nearest_distances[start:stop] = nearest.values
        nearest_candidates[start:stop] = nearest.indices

    unmatched = torch.where(n_hits == 0)[0]
    ambiguous_mask = (n_hits > 1) | ((n_hits == 1) & (claims[first_hit] > 1))
    ambiguous = torch.where(ambiguous_mask)[0]

    owner_to_candidate = torch.where(
        n_hits == 1, first_hit, torch.full_like(first_hit, -1)
    )
    owner_to_candidate[ambiguous] = -1

    return (
        owner_to_candidate,
        unmatched,
        ambiguous,
        nearest_distances,
        nearest_candidates,
    )


def match_faces(
    owner_centres: torch.Tensor,
    owner_tols: torch.Tensor,
    candidate_centres: torch.Tensor,
    candidate_tols: torch.Tensor,
    match_tol: float | None = None,
) -> torch.Tensor:
    """Match candidate face centres onto owner face centres.

    Parameters
    ----------
    owner_centres : torch.Tensor
        Owner face centres, shape (n_faces, 3).
    owner_tols : torch.Tensor
        Owner face tolerances (:func:`~coupledmesh.geometry.calc_face_tol`),
        shape (n_faces,).
    candidate_centres : torch.Tensor
        Candidate face centres, shape (n_faces, 3), in the owner frame.
    candidate_tols : torch.Tensor
        Candidate face tolerances, shape (n_faces,).
    match_tol : float | None
        Relative match tolerance. Defaults to ``MATCH_TOL``.

    Returns
    -------
    torch.Tensor
        ``face_map`` of shape (n_faces,): ``face_map[candidate] = owner``.

    Raises
    ------
    ValueError
        If the two sides do not have the same number of faces.
    FaceMatchError
        If any owner face has no candidate, or more than one, within
        tolerance.
    """
    match_tol = resolve_match_tol(match_tol)
    n = owner_centres.shape[0]
    if candidate_centres.shape[0] != n:
        raise ValueError(
            f"Both sides must have the same number of faces, got {n} owner "
            f"faces and {candidate_centres.shape[0]} candidate faces."
        )
    if owner_tols.shape != (n,) or candidate_tols.shape != (n,):
        raise ValueError(
            f"Expected one tolerance per face, got {owner_tols.shape=} and "
            f"{candidate_tols.shape=}."
        )

    device = owner_centres.device
    if n == 0:
        return torch.zeros(0, dtype=torch.int64, device=device)

    (
        owner_to_candidate,
        unmatched,
        ambiguous,
        nearest_distances,
        nearest_candidates,
    ) = _match_centres(
        owner_centres, owner_tols, candidate_centres, candidate_tols, match_tol
    )

    if len(unmatched) > 0 or len(ambiguous) > 0:
        error = FaceMatchError(
            unmatched=unmatched,
            ambiguous=ambiguous,
            misaligned=torch.zeros(0, dtype=torch.int64, device=device),
            nearest_distances=nearest_distances,
            nearest_candidates=nearest_candidates,
        )
        logger.warning("%s", error)
        raise error

    face_map = torch.empty(n, dtype=torch.int64, device=device)
    face_map[owner_to_candidate] = torch.arange(n, dtype=torch.int64, device=device)
    return face_map


def _inverse_permutation(face_map: torch.Tensor) -> torch.Tensor:
    inverse = torch.empty_like(face_map)
    inverse[face_map] = torch.arange(len(face_map), device=face_map.device)
    return inverse


def ordering_reference(face_set: FaceSet) -> TensorDict:
    """Collect the per-face data other sides are ordered against.

    This is what the reference side of an interface publishes: face centres,
    anchor points and face tolerances, in a ``TensorDict`` with batch size
    ``(n_faces,)``.
    """
    return TensorDict(
        {
            "centres": face_set.face_centres,
            "anchors": face_set.anchor_points,
            "tolerances": face_set.face_tolerances,
        },
        batch_size=torch.Size([face_set.n_faces]),
        device=face_set.points.device,
    )


def order_to_reference(
    reference: TensorDict,
    candidate: FaceSet,
    match_tol: float | None = None,
) -> FaceOrdering:
    """Order a candidate face set against published reference data.

    Parameters
    ----------
    reference : TensorDict
        Output of :func:`ordering_reference` for the reference side.
    candidate : FaceSet
        Faces to reorder, in the reference frame.
    match_tol : float | None
        Relative match tolerance. Defaults to ``MATCH_TOL``.

    Returns
    -------
    FaceOrdering
        ``(face_map, rotation, changed)``.

    Raises
    ------
    ValueError
        If the face counts differ.
    FaceMatchError
        If a face cannot be matched unambiguously, or a matched face has no
        vertex on the reference anchor.
    """
    match_tol = resolve_match_tol(match_tol)
    n_reference = reference.batch_size[0] if reference.batch_dims > 0 else 0
    if n_reference != candidate.n_faces:
        raise ValueError(
            f"Both sides must have the same number of faces, got {n_reference} "
            f"owner faces and {candidate.n_faces} candidate faces."
        )

    reference_centres = reference["centres"]
    reference_tols = reference["tolerances"]

    face_map = match_faces(
        reference_centres,
        reference_tols,
        candidate.face_centres,
        candidate.face_tolerances,
        match_tol,
    )
    new_to_old = _inverse_permutation(face_map)

    ### Align anchors of the reordered candidate faces with the reference anchors
    anchor_tols = _pair_tolerances(
        reference_tols, candidate.face_tolerances[new_to_old], match_tol
    )
    rotation = _vertex_rotations(
        candidate.faces.select_faces(new_to_old),
        candidate.points,
        reference["anchors"],
        anchor_tols,
    )

    misaligned = torch.where(rotation < 0)[0]
    if len(misaligned) > 0:
        distances = (reference_centres - candidate.face_centres[new_to_old]).norm(
            dim=-1
        )
        empty = torch.zeros(0, dtype=torch.int64, device=face_map.device)
        error = FaceMatchError(
            unmatched=empty,
            ambiguous=empty,
            misaligned=misaligned,
            nearest_distances=distances,
            nearest_candidates=new_to_old,
        )
        logger.warning("%s", error)
        raise error

    identity = torch.arange(len(face_map), device=face_map.device)
    moved = face_map != identity
    changed = bool(moved.any() or (rotation != 0).any())

    logger.debug(
        "Ordered %d faces: %d moved, %d rotated",
        len(face_map),
        int(moved.sum()),
        int((rotation != 0).sum()),
    )
    return FaceOrdering(face_map=face_map, rotation=rotation, changed=changed)


def order_faces(
    owner: FaceSet,
    candidate: FaceSet,
    match_tol: float | None = None,
) -> FaceOrdering:
    """Order a candidate face set so it aligns index-for-index with the owner.

    Both face sets must already be in a common frame: apply the coupling
    transform (:meth:`~coupledmesh.coupling.tensors.CouplingTransform.faces_to_owner_frame`)
    to the candidate side first. Anchors are aligned with
    :func:`get_rotation` semantics, using the pair tolerance of the matched
    faces.

    Parameters
    ----------
    owner : FaceSet
        Reference faces.
    candidate : FaceSet
        Faces to reorder, same number of faces as ``owner``.
    match_tol : float | None
        Relative match tolerance. Defaults to ``MATCH_TOL``.

    Returns
    -------
    FaceOrdering
        ``(face_map, rotation, changed)``.

    Raises
    ------
    ValueError
        If the face counts differ.
    FaceMatchError
        If a face cannot be matched unambiguously, or a matched face has no
        vertex on the owner anchor.

    Examples
    --------
    >>> owner = FaceSet.from_faces(points, [[0, 1, 2, 3]])  # doctest: +SKIP
    >>> candidate = FaceSet.from_faces(points, [[2, 3, 0, 1]])  # doctest: +SKIP
    >>> order_faces(owner, candidate).rotation  # doctest: +SKIP
    tensor([2])
    """
    if owner.n_faces != candidate.n_faces:
        raise ValueError(
            f"Both sides must have the same number of faces, got {owner.n_faces} "
            f"owner faces and {candidate.n_faces} candidate faces."
        )
    return order_to_reference(ordering_reference(owner), candidate, match_tol)


def apply_face_ordering(faces: FaceList, ordering: FaceOrdering) -> FaceList:
    """Reorder and rotate candidate faces according to ``ordering``.

    The i-th face of the result is aligned with owner face i, anchor included.
    """
    new_to_old = _inverse_permutation(ordering.face_map)
    return faces.select_faces(new_to_old).rotate_vertices(ordering.rotation)


def which_patch(
    patch_starts: Sequence[int] | torch.Tensor,
    face_i: int | torch.Tensor,
) -> int | torch.Tensor:
    """Given a sorted list of patch start offsets, determine the patch of a face.

    Parameters
    ----------
    patch_starts : Sequence[int] | torch.Tensor
        Start offset of every patch, non-decreasing.
    face_i : int | torch.Tensor
        Global face index, or a tensor of them.

    Returns
    -------
    int | torch.Tensor
        Patch index (same type/shape as ``face_i``). With empty patches
        sharing a start offset the last of them, i.e. the one that actually
        holds the face, is returned.

    Raises
    ------
    ValueError
        If ``patch_starts`` is empty or unsorted, or a face index precedes
        the first patch start.

    Examples
    --------
        >>> which_patch([0, 10, 25], 12)
        1
        >>> which_patch([0, 10, 25], torch.tensor([0, 9, 25, 40])).tolist()
        [0, 0, 2, 2]
    """
    starts = torch.as_tensor(patch_starts, dtype=torch.int64)
    if starts.ndim != 1 or len(starts) == 0:
        raise ValueError(f"patch_starts must be a non-empty 1D sequence, got {starts}")
    if bool((starts[1:] < starts[:-1]).any()):
        raise ValueError(f"patch_starts must be sorted, got {starts.tolist()}")

    scalar = not isinstance(face_i, torch.Tensor)
    faces = torch.as_tensor(face_i, dtype=torch.int64)
    starts = starts.to(faces.device)

    patch = torch.searchsorted(starts, faces, right=True) - 1
    if bool((patch < 0).any()):
        raise ValueError(
            f"Face index {faces.min().item()} precedes the first patch start "
            f"{starts[0].item()}"
        )
    return int(patch) if scalar else patch
