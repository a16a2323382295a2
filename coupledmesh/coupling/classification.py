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

"""Classification of the geometric relation between two coupled face sets.

Given matched pairs of owner/neighbour face centres and normals, decide
whether the neighbour side is a rotational or a translational image of the
owner side.

The decision is an explicit table of attempts evaluated in order::

    requested        attempts
    ---------------  ---------------------------------
    UNKNOWN          ROTATIONAL, then TRANSLATIONAL
    ROTATIONAL       ROTATIONAL
    TRANSLATIONAL    TRANSLATIONAL

Each attempt returns a tagged :class:`TransformResult`; the first accepted
result wins. When every attempt is rejected the result is ``UNKNOWN`` and
carries the rejection reasons.

Conventions
-----------
- Coupled faces point toward each other, so the forward rotation ``R``
  satisfies ``R @ (-nf) = nr`` and ``R @ Cf + s = Cr``.
- Separation is *neighbour minus owner*: ``s = Cr - R @ Cf`` (``R = I`` for
  translational couplings).
- ``small_dist`` is a per-pair absolute distance (length units);
  ``abs_tol`` is a dimensionless tolerance on unit normals and on tensor
  entries.
"""

import logging
from dataclasses import dataclass

import torch
import torch.nn.functional as F
from jaxtyping import Float

from coupledmesh.coupling.transform_type import TransformType
from coupledmesh.errors import ClassificationError
from coupledmesh.transformations.geometric import _build_rotation_matrix, rotation_tensor
from coupledmesh.utilities._tolerances import resolve_match_tol, safe_eps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformResult:
    """Tagged outcome of a transform classification.

    Attributes
    ----------
    relation : TransformType
        ``ROTATIONAL``, ``TRANSLATIONAL``, or ``UNKNOWN`` when rejected.
    rotation : torch.Tensor | None
        Forward rotation, shape (3, 3). ``None`` when the sides are parallel
        (no rotation needed) or the relation is ``UNKNOWN``.
    separation : torch.Tensor
        Offset from owner to neighbour: shape (0, 3) when there is none,
        (1, 3) for a single common offset, (n_faces, 3) for per-face offsets.
    reason : str
        Why the relation was (or attempts were) rejected; empty on success.
    """

    relation: TransformType
    rotation: torch.Tensor | None
    separation: torch.Tensor
    reason: str = ""

    @property
    def parallel(self) -> bool:
        return self.rotation is None

    @property
    def separated(self) -> bool:
        return len(self.separation) > 0


def _rejected(reason: str, like: torch.Tensor) -> TransformResult:
    return TransformResult(
        relation=TransformType.UNKNOWN,
        rotation=None,
        separation=like.new_zeros((0, 3)),
        reason=reason,
    )


def _separation_field(
    offsets: Float[torch.Tensor, "n_faces 3"],
    small_dist: Float[torch.Tensor, " n_faces"],
) -> Float[torch.Tensor, "n 3"]:
    """Collapse per-face offsets to the smallest field describing them.

    Three situations:

    - every offset is zero (within ``small_dist``): empty field, no separation
    - every offset is the same: a single separation vector
    - offsets differ per face: one separation vector per face
    """
    mean_offset = offsets.mean(dim=0)
    if bool(((offsets - mean_offset).norm(dim=-1) <= small_dist).all()):
        if bool((offsets.norm(dim=-1) <= small_dist).all()):
            return offsets[:0]
        return mean_offset.unsqueeze(0)
    return offsets


def estimate_rotation(
    cf: Float[torch.Tensor, "n_faces 3"],
    cr: Float[torch.Tensor, "n_faces 3"],
    nf: Float[torch.Tensor, "n_faces 3"],
    nr: Float[torch.Tensor, "n_faces 3"],
) -> Float[torch.Tensor, "3 3"]:
    """Best-fit proper rotation taking the owner side onto the neighbour side.

    Solves the orthogonal Procrustes (Kabsch) problem over two families of
    vectors: the flipped owner normals ``-nf`` against ``nr``, and the owner
    centre spread ``Cf - mean(Cf)`` against ``Cr - mean(Cr)``. The spread is
    divided by its largest norm so both families are dimensionless and the
    estimate does not depend on the mesh scale.

    When the data only pin down a single direction (a single face pair, or
    all faces sharing one normal and one centre), the rotation about that
    direction is undetermined and the minimal rotation between the mean
    normals is returned instead. If those normals are antiparallel the
    minimal rotation is a half-turn about an undetermined axis; the axis is
    then resolved from the centres with :func:`estimate_axial_rotation`.

    Raises
    ------
    ClassificationError
        If the normals are antiparallel and the centres do not resolve the
        half-turn axis.
    """
    src = [-nf]
    dst = [nr]

    spread_f = cf - cf.mean(dim=0)
    spread_r = cr - cr.mean(dim=0)
    length = torch.maximum(spread_f.norm(dim=-1).max(), spread_r.norm(dim=-1).max())
    if length > safe_eps(cf.dtype):
        src.append(spread_f / length)
        dst.append(spread_r / length)

    src_vectors = torch.cat(src, dim=0)
    dst_vectors = torch.cat(dst, dim=0)

    ### Cross-covariance H = sum(p q^T); the rotation is V diag(1, 1, d) U^T
    h = src_vectors.T @ dst_vectors
    u, s, vh = torch.linalg.svd(h)

    rank_tol = torch.finfo(cf.dtype).eps ** 0.5
    if s[1] <= rank_tol * s[0]:
        mean_nf = F.normalize(nf.sum(dim=0), dim=0, eps=safe_eps(cf.dtype))
        mean_nr = F.normalize(nr.sum(dim=0), dim=0, eps=safe_eps(cf.dtype))
        opposed = torch.linalg.cross(-mean_nf, mean_nr, dim=0).norm() <= rank_tol
        if opposed and torch.dot(-mean_nf, mean_nr) < 0:
            return estimate_axial_rotation(
                cf.mean(dim=0), cr.mean(dim=0), mean_nf, mean_nr
            )
        return rotation_tensor(-mean_nf, mean_nr)

    v = vh.T
    d = torch.sign(torch.linalg.det(v @ u.T))
    if d == 0:
        d = torch.ones_like(d)
    correction = torch.diag(torch.stack([torch.ones_like(d), torch.ones_like(d), d]))
    return v @ correction @ u.T


def estimate_axial_rotation(
    cf: Float[torch.Tensor, " 3"],
    cr: Float[torch.Tensor, " 3"],
    nf: Float[torch.Tensor, " 3"],
    nr: Float[torch.Tensor, " 3"],
    small_dist: torch.Tensor | float = 0.0,
    abs_tol: float | None = None,
    axis: torch.Tensor | None = None,
    centre: torch.Tensor | None = None,
) -> Float[torch.Tensor, "3 3"] | None:
    """Rotation about one axis taking a single owner pair onto a neighbour pair.

    One centre and one normal per side do not determine a general rotation.
    Under a pure rotation, however, ``-nf`` and ``nr`` make equal angles
    with the axis and ``cf`` moves to ``cr`` in a plane normal to it, so
    the axis is parallel to ``(nf + nr) x (cr - cf)``. The angle is measured
    between the parts of ``-nf`` and ``nr`` normal to the axis or, when the
    normals lie along the axis, between the parts of ``cf - centre`` and
    ``cr - centre``.

    Parameters
    ----------
    cf, cr : torch.Tensor
        Owner and neighbour centre, shape (3,).
    nf, nr : torch.Tensor
        Owner and neighbour normal, shape (3,). Need not be normalized.
    small_dist : torch.Tensor | float
        Distance below which two centres coincide.
    abs_tol : float | None
        Tolerance on unit normals. Defaults to
        :data:`~coupledmesh.utilities._tolerances.MATCH_TOL`.
    axis : torch.Tensor | None
        Rotation axis, shape (3,). Inferred from the pair when None, which
        assumes the neighbour is not also shifted along the axis.
    centre : torch.Tensor | None
        A point on the rotation axis. Only needed when the normals lie
        along the axis.

    Returns
    -------
    torch.Tensor | None
        Rotation of shape (3, 3), or None when the sides need no rotation
        (opposite normals with no axis given, or a zero angle).

    Raises
    ------
    ClassificationError
        If the axis or the angle cannot be resolved from the pair, or the
        normals are not related by a rotation about the given axis.
    """
    abs_tol = resolve_match_tol(abs_tol)
    eps = safe_eps(cf.dtype)
    nf = F.normalize(nf, dim=0, eps=eps)
    nr = F.normalize(nr, dim=0, eps=eps)
    small_dist = torch.as_tensor(small_dist, device=cf.device, dtype=cf.dtype)

    if axis is None:
        bisector = nf + nr
        if bisector.norm() <= abs_tol:
            return None
        chord = cr - cf
        if chord.norm() <= small_dist.clamp(min=eps):
            raise ClassificationError(
                TransformType.ROTATIONAL,
                "the centres coincide, so the rotation axis is undetermined; "
                "give the axis explicitly",
            )
        axis = torch.linalg.cross(
            F.normalize(bisector, dim=0), chord / chord.norm(), dim=0
        )
        if axis.norm() <= abs_tol:
            raise ClassificationError(
                TransformType.ROTATIONAL,
                "the normal bisector is parallel to the centre chord, so the "
                "rotation axis is undetermined; give the axis explicitly",
            )
    axis = torch.as_tensor(axis, device=cf.device, dtype=cf.dtype)
    if axis.norm() <= eps:
        raise ValueError(f"Rotation axis has near-zero length: {axis.norm()=}")
    axis = F.normalize(axis, dim=0, eps=eps)

    u = -nf - torch.dot(-nf, axis) * axis
    v = nr - torch.dot(nr, axis) * axis
    if u.norm() <= abs_tol or v.norm() <= abs_tol:
        if centre is None:
            raise ClassificationError(
                TransformType.ROTATIONAL,
                "the face normals lie along the rotation axis; a rotation "
                "centre is needed to resolve the angle",
            )
        centre = torch.as_tensor(centre, device=cf.device, dtype=cf.dtype)
        u = cf - centre
        v = cr - centre
        u = u - torch.dot(u, axis) * axis
        v = v - torch.dot(v, axis) * axis
        if u.norm() <= small_dist.clamp(min=eps) or v.norm() <= small_dist.clamp(min=eps):
            raise ClassificationError(
                TransformType.ROTATIONAL,
                "the centres lie on the rotation axis, so the angle is undetermined",
            )

    angle = torch.atan2(torch.dot(axis, torch.linalg.cross(u, v, dim=0)), torch.dot(u, v))
    rotation = _build_rotation_matrix(angle, axis)

    residual = (rotation @ (-nf) - nr).norm()
    if residual > abs_tol:
        raise ClassificationError(
            TransformType.ROTATIONAL,
            f"the face normals are not related by a rotation about axis "
            f"{axis.tolist()} (residual {residual.item():.3e} > {abs_tol:.3e})",
        )

    identity = torch.eye(3, device=cf.device, dtype=cf.dtype)
    if bool((rotation - identity).abs().max() <= abs_tol):
        return None
    return rotation


def _try_rotational(
    cf: torch.Tensor,
    cr: torch.Tensor,
    nf: torch.Tensor,
    nr: torch.Tensor,
    small_dist: torch.Tensor,
    abs_tol: float,
    forced: bool,
) -> TransformResult:
    """Accept the pairs as a common rigid rotation (plus optional offset)."""
    try:
        rotation = estimate_rotation(cf, cr, nf, nr)
    except ClassificationError as exc:
        return _rejected(exc.reason, cf)
    identity = torch.eye(3, device=cf.device, dtype=cf.dtype)

    orthogonality_error = (rotation.T @ rotation - identity).abs().max()
    if orthogonality_error > abs_tol or torch.linalg.det(rotation) <= 0:
        return _rejected(
            f"best-fit tensor is not a proper rotation "
            f"(orthogonality error {orthogonality_error.item():.3e})",
            cf,
        )

    normal_residual = ((-nf) @ rotation.T - nr).norm(dim=-1)
    n_bad = int((normal_residual > abs_tol).sum())
    if n_bad > 0:
        return _rejected(
            f"{n_bad} of {len(nf)} face normals are not related by a common "
            f"rotation (max residual {normal_residual.max().item():.3e} > {abs_tol:.3e})",
            cf,
        )

    parallel = bool((rotation - identity).abs().max() <= abs_tol)
    if parallel:
        if not forced:
            return _rejected("the coupled planes are parallel", cf)
        return TransformResult(
            relation=TransformType.ROTATIONAL,
            rotation=None,
            separation=_separation_field(cr - cf, small_dist),
        )

    offsets = cr - cf @ rotation.T
    deviation = (offsets - offsets.mean(dim=0)).norm(dim=-1)
    n_bad = int((deviation > small_dist).sum())
    if n_bad > 0:
        return _rejected(
            f"{n_bad} of {len(cf)} face centres are not related by a common "
            f"rotation (max deviation {deviation.max().item():.3e})",
            cf,
        )

    return TransformResult(
        relation=TransformType.ROTATIONAL,
        rotation=rotation,
        separation=_separation_field(offsets, small_dist),
    )


def _try_translational(
    cf: torch.Tensor,
    cr: torch.Tensor,
    nf: torch.Tensor,
    nr: torch.Tensor,
    small_dist: torch.Tensor,
    abs_tol: float,
    forced: bool,
) -> TransformResult:
    """Accept the pairs as parallel, opposite-facing planes."""
    normal_residual = (nf + nr).norm(dim=-1)
    n_bad = int((normal_residual > abs_tol).sum())
    if n_bad > 0:
        return _rejected(
            f"{n_bad} of {len(nf)} face pairs are not opposite-facing "
            f"(max |nf + nr| {normal_residual.max().item():.3e} > {abs_tol:.3e})",
            cf,
        )

    return TransformResult(
        relation=TransformType.TRANSLATIONAL,
        rotation=None,
        separation=_separation_field(cr - cf, small_dist),
    )


_BRANCHES = {
    TransformType.ROTATIONAL: _try_rotational,
    TransformType.TRANSLATIONAL: _try_translational,
}

_ATTEMPTS = {
    TransformType.UNKNOWN: (TransformType.ROTATIONAL, TransformType.TRANSLATIONAL),
    TransformType.ROTATIONAL: (TransformType.ROTATIONAL,),
    TransformType.TRANSLATIONAL: (TransformType.TRANSLATIONAL,),
}


def _as_small_dist(
    small_dist: torch.Tensor | float, reference: torch.Tensor
) -> torch.Tensor:
    small_dist = torch.as_tensor(
        small_dist, device=reference.device, dtype=reference.dtype
    )
    if small_dist.ndim == 0:
        small_dist = small_dist.expand(reference.shape[0])
    if small_dist.shape != (reference.shape[0],):
        raise ValueError(
            f"small_dist must be a scalar or have one entry per face "
            f"({reference.shape[0]}), got {small_dist.shape=}"
        )
    if bool((small_dist < 0).any()):
        raise ValueError("small_dist must be non-negative")
    return small_dist


def classify_transform(
    cf: Float[torch.Tensor, "n_faces 3"],
    cr: Float[torch.Tensor, "n_faces 3"],
    nf: Float[torch.Tensor, "n_faces 3"],
    nr: Float[torch.Tensor, "n_faces 3"],
    small_dist: Float[torch.Tensor, " n_faces"] | float,
    abs_tol: float | None = None,
    transform: TransformType | str = TransformType.UNKNOWN,
) -> TransformResult:
    """Classify how the neighbour side relates to the owner side.

    Parameters
    ----------
    cf : torch.Tensor
        Owner face centres, shape (n_faces, 3).
    cr : torch.Tensor
        Neighbour face centres, shape (n_faces, 3), matched to ``cf`` by index.
    nf : torch.Tensor
        Owner unit face normals, shape (n_faces, 3).
    nr : torch.Tensor
        Neighbour unit face normals, shape (n_faces, 3).
    small_dist : torch.Tensor | float
        Matching distance per face pair, shape (n_faces,), or one value for
        all pairs. Typically ``match_tol * calc_face_tol(...)``.
    abs_tol : float | None
        Absolute tolerance on unit normals and tensor entries. Defaults to
        :data:`~coupledmesh.utilities._tolerances.MATCH_TOL`.
    transform : TransformType | str
        Requested relation. ``UNKNOWN`` tries rotational first, then
        translational; other values force that branch.

    Returns
    -------
    TransformResult
        Tagged result. ``relation`` is ``UNKNOWN`` when no attempt was
        accepted; callers must treat that as an invalid coupling.

    Raises
    ------
    ValueError
        If the input arrays do not all have shape (n_faces, 3), or
        ``small_dist`` has the wrong length or negative entries.

    Notes
    -----
    With an ``UNKNOWN`` request, sides that need no rotation (parallel
    planes) are reported as ``TRANSLATIONAL``, with an empty separation when
    the planes also coincide. With a forced ``ROTATIONAL`` request the same
    sides are reported as ``ROTATIONAL`` with ``rotation=None``.
    """
    transform = TransformType.from_name(transform)
    abs_tol = resolve_match_tol(abs_tol)

    if cf.ndim != 2 or cf.shape[-1] != 3:
        raise ValueError(f"Face centres must have shape (n_faces, 3), got {cf.shape=}")
    for name, value in (("cr", cr), ("nf", nf), ("nr", nr)):
        if value.shape != cf.shape:
            raise ValueError(
                f"All inputs must have the shape of cf {tuple(cf.shape)}, "
                f"but {name} has shape {tuple(value.shape)}"
            )
    small_dist = _as_small_dist(small_dist, cf)

    if cf.shape[0] == 0:
        relation = (
            TransformType.TRANSLATIONAL
            if transform is TransformType.UNKNOWN
            else transform
        )
        return TransformResult(
            relation=relation, rotation=None, separation=cf.new_zeros((0, 3))
        )

    forced = transform is not TransformType.UNKNOWN
    reasons = []
    for attempt in _ATTEMPTS[transform]:
        result = _BRANCHES[attempt](cf, cr, nf, nr, small_dist, abs_tol, forced)
        if result.relation is not TransformType.UNKNOWN:
            logger.debug(
                "Classified %d face pairs as %s (parallel=%s, separation shape=%s)",
                cf.shape[0],
                result.relation.name,
                result.parallel,
                tuple(result.separation.shape),
            )
            return result
        logger.debug("Rejected %s transform: %s", attempt.name, result.reason)
        reasons.append(f"{attempt.value}: {result.reason}")

    return _rejected("; ".join(reasons), cf)
