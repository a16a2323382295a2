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

"""Rotation tensors and rigid/similarity transformations of face sets.

This module provides the tensor algebra shared by the transform classifier
(minimal rotation between two directions, Rodrigues rotation matrices) and
geometric transformations of :class:`~coupledmesh.face_set.FaceSet` objects
with cache handling. By default all caches are invalidated; transformations
explicitly opt-in to preserve or transform specific cache fields.

Cached fields handled:
- anchors: always transformed
- centres, area_vectors, normals, tolerances: transformed for similarity
  matrices (orthogonal matrix times a scalar), invalidated otherwise
"""

from typing import TYPE_CHECKING, Literal

import torch
import torch.nn.functional as F
from tensordict import TensorDict

from coupledmesh.utilities._cache import CACHE_KEY, get_cached, set_cached
from coupledmesh.utilities._tolerances import safe_eps

if TYPE_CHECKING:
    from coupledmesh.face_set import FaceSet


### Rotation Matrix Construction ###


def _build_rotation_matrix(
    angle: float | torch.Tensor,
    axis: torch.Tensor,
    device=None,
    dtype: torch.dtype | None = None,
) -> torch.Tensor:
    """Build a 3D rotation matrix about ``axis`` by ``angle`` radians.

    Uses Rodrigues' formula: ``R = cI + s[u]_x + (1-c)(u outer u)``.

    Parameters
    ----------
    angle : float or torch.Tensor
        Rotation angle in radians (right-hand rule).
    axis : torch.Tensor
        Rotation axis vector, shape (3,). Need not be normalized.
    device : device, optional
        Target device for the output matrix.
    dtype : torch.dtype, optional
        Target dtype. Defaults to the dtype of ``angle`` (float32 for floats).

    Returns
    -------
    torch.Tensor
        Rotation matrix, shape (3, 3).
    """
    angle = torch.as_tensor(angle, device=device, dtype=dtype)
    if not torch.is_floating_point(angle):
        angle = angle.to(torch.get_default_dtype())
    c, s = torch.cos(angle), torch.sin(angle)

    axis = torch.as_tensor(axis, device=angle.device, dtype=angle.dtype)
    if axis.shape != (3,):
        raise NotImplementedError(
            f"Rotation only supported in 3D (axis shape (3,)). "
            f"Got axis with shape {axis.shape}."
        )
    if axis.norm() <= safe_eps(axis.dtype):
        raise ValueError(f"Axis vector has near-zero length: {axis.norm()=}")

    u = F.normalize(axis, dim=0, eps=0.0)
    ux, uy, uz = u
    zero = torch.zeros((), device=u.device, dtype=u.dtype)

    # Skew-symmetric cross-product matrix [u]_x
    u_cross = torch.stack(
        [
            torch.stack([zero, -uz, uy]),
            torch.stack([uz, zero, -ux]),
            torch.stack([-uy, ux, zero]),
        ]
    )

    identity = torch.eye(3, device=u.device, dtype=u.dtype)
    return c * identity + s * u_cross + (1 - c) * u.outer(u)


def rotation_tensor(n1: torch.Tensor, n2: torch.Tensor) -> torch.Tensor:
    """Minimal rotation taking unit vector ``n1`` onto unit vector ``n2``.

    The rotation axis is ``n1 x n2``. For (anti)parallel vectors the axis is
    undefined: parallel vectors give the identity, antiparallel vectors give
    a half-turn about an arbitrary axis perpendicular to ``n1``. Callers that
    need a particular half-turn axis must resolve it themselves.

    Parameters
    ----------
    n1 : torch.Tensor
        Source direction, shape (3,).
    n2 : torch.Tensor
        Target direction, shape (3,).

    Returns
    -------
    torch.Tensor
        Orthonormal tensor ``R`` of shape (3, 3) with ``R @ n1 == n2``.
    """
    eps = safe_eps(n1.dtype)
    n1 = F.normalize(n1, dim=0, eps=eps)
    n2 = F.normalize(n2, dim=0, eps=eps)

    cos_angle = torch.clamp(torch.dot(n1, n2), -1.0, 1.0)
    axis = torch.linalg.cross(n1, n2, dim=0)
    sin_angle = axis.norm()

    identity = torch.eye(3, device=n1.device, dtype=n1.dtype)
    tol = torch.finfo(n1.dtype).eps ** 0.5

    if sin_angle <= tol:
        if cos_angle > 0:
            return identity

        ### Antiparallel: half-turn about any axis perpendicular to n1
        trial = identity[torch.argmin(n1.abs())]
        perpendicular = F.normalize(trial - torch.dot(trial, n1) * n1, dim=0, eps=eps)
        return 2.0 * perpendicular.outer(perpendicular) - identity

    return _build_rotation_matrix(
        torch.atan2(sin_angle, cos_angle), axis, device=n1.device, dtype=n1.dtype
    )


def _similarity_scale(matrix: torch.Tensor) -> torch.Tensor | None:
    """Return ``s`` if ``matrix = s * Q`` with ``Q`` orthogonal, else None."""
    gram = matrix.T @ matrix
    s_squared = torch.diagonal(gram).mean()
    if s_squared <= safe_eps(matrix.dtype):
        return None
    tol = torch.finfo(matrix.dtype).eps ** 0.5
    identity = torch.eye(3, device=matrix.device, dtype=matrix.dtype)
    if (gram / s_squared - identity).abs().max() > tol:
        return None
    return s_squared.sqrt()


def _empty_cache(face_set: "FaceSet") -> TensorDict:
    return face_set.face_data.exclude(CACHE_KEY)


### Public API ###


def transform(
    face_set: "FaceSet",
    matrix: torch.Tensor,
) -> "FaceSet":
    """Apply a linear transformation ``p -> matrix @ p`` to the face set.

    Parameters
    ----------
    face_set : FaceSet
        Input face set to transform.
    matrix : torch.Tensor
        Transformation matrix, shape (3, 3).

    Returns
    -------
    FaceSet
        New FaceSet with transformed geometry and appropriately updated caches.

    Notes
    -----
    Cache Handling:
        - anchors: Always transformed
        - For similarity matrices ``M = sQ``:
            - centres: Transformed
            - area_vectors: ``s^2 det(Q) Q a``
            - normals: ``det(Q) Q n``
            - tolerances: Scaled by ``|s|``
        - Otherwise only anchors survive.
    """
    if not torch.compiler.is_compiling():
        if matrix.shape != (3, 3):
            raise ValueError(f"matrix must have shape (3, 3), got {matrix.shape}")

    matrix = matrix.to(device=face_set.points.device, dtype=face_set.points.dtype)
    new_points = face_set.points @ matrix.T
    old = face_set.face_data
    new_face_data = _empty_cache(face_set)

    if (v := get_cached(old, "anchors")) is not None:
        set_cached(new_face_data, "anchors", v @ matrix.T)

    s = _similarity_scale(matrix)
    if s is not None:
        q = matrix / s
        det_sign = torch.sign(torch.linalg.det(q))
        if (v := get_cached(old, "centres")) is not None:
            set_cached(new_face_data, "centres", v @ matrix.T)
        if (v := get_cached(old, "area_vectors")) is not None:
            set_cached(new_face_data, "area_vectors", s**2 * det_sign * (v @ q.T))
        if (v := get_cached(old, "normals")) is not None:
            set_cached(new_face_data, "normals", det_sign * (v @ q.T))
        if (v := get_cached(old, "tolerances")) is not None:
            set_cached(new_face_data, "tolerances", v * s)

    from coupledmesh.face_set import FaceSet

    return FaceSet(points=new_points, faces=face_set.faces, face_data=new_face_data)


def translate(
    face_set: "FaceSet",
    offset: torch.Tensor | list | tuple,
) -> "FaceSet":
    """Apply a translation to the face set.

    Parameters
    ----------
    face_set : FaceSet
        Input face set to translate.
    offset : torch.Tensor or list or tuple
        Translation vector, shape (3,).

    Returns
    -------
    FaceSet
        New FaceSet with translated geometry.

    Notes
    -----
    Cache Handling:
        - centres, anchors: Translated
        - area_vectors, normals, tolerances: Unchanged
    """
    offset = torch.as_tensor(
        offset, device=face_set.points.device, dtype=face_set.points.dtype
    )

    if not torch.compiler.is_compiling():
        if offset.shape != (3,):
            raise ValueError(f"offset must have shape (3,), got {offset.shape}")

    old = face_set.face_data
    new_face_data = _empty_cache(face_set)

    for key in ("area_vectors", "normals", "tolerances"):
        if (v := get_cached(old, key)) is not None:
            set_cached(new_face_data, key, v)
    for key in ("centres", "anchors"):
        if (v := get_cached(old, key)) is not None:
            set_cached(new_face_data, key, v + offset)

    from coupledmesh.face_set import FaceSet

    return FaceSet(
        points=face_set.points + offset, faces=face_set.faces, face_data=new_face_data
    )


def rotate(
    face_set: "FaceSet",
    angle: float,
    axis: torch.Tensor | list | tuple | Literal["x", "y", "z"],
    center: torch.Tensor | list | tuple | None = None,
) -> "FaceSet":
    """Rotate the face set about an axis by a specified angle.

    Parameters
    ----------
    face_set : FaceSet
        Input face set to rotate.
    angle : float
        Rotation angle in radians (counterclockwise, right-hand rule).
    axis : torch.Tensor or list or tuple or {"x", "y", "z"}
        Rotation axis vector, shape (3,). String literals "x", "y", "z" are
        converted to unit vectors.
    center : torch.Tensor or list or tuple or None
        Center point for rotation. If None, rotates about the origin.

    Returns
    -------
    FaceSet
        New FaceSet with rotated geometry.
    """
    device, dtype = face_set.points.device, face_set.points.dtype

    ### Convert string axis to one-hot tensor
    if isinstance(axis, str):
        axis_map = {"x": 0, "y": 1, "z": 2}
        if axis not in axis_map:
            raise ValueError(f"axis must be 'x', 'y', or 'z', got {axis!r}")
        idx = axis_map[axis]
        axis = torch.zeros(3, device=device, dtype=dtype)
        axis[idx] = 1.0

    rotation_matrix = _build_rotation_matrix(angle, axis, device=device, dtype=dtype)

    ### Handle center by translate-rotate-translate
    if center is not None:
        center = torch.as_tensor(center, device=device, dtype=dtype)
        return translate(
            transform(translate(face_set, -center), rotation_matrix),
            center,
        )

    return transform(face_set, rotation_matrix)


def scale(
    face_set: "FaceSet",
    factor: float | torch.Tensor | list | tuple,
    center: torch.Tensor | list | tuple | None = None,
) -> "FaceSet":
    """Scale the face set by specified factor(s).

    Parameters
    ----------
    face_set : FaceSet
        Input face set to scale.
    factor : float or torch.Tensor or list or tuple
        Scale factor(s). Scalar for uniform, vector of shape (3,) for
        non-uniform.
    center : torch.Tensor or list or tuple or None
        Center point for scaling. If None, scales about the origin.

    Returns
    -------
    FaceSet
        New FaceSet with scaled geometry.
    """
    device, dtype = face_set.points.device, face_set.points.dtype
    factor_tensor = torch.as_tensor(factor, device=device, dtype=dtype)
    if factor_tensor.ndim == 0:
        factor_tensor = factor_tensor.expand(3)
    elif factor_tensor.shape != (3,):
        raise ValueError(
            f"factor must be scalar or shape (3,), got {factor_tensor.shape}"
        )

    scale_matrix = torch.diag(factor_tensor)

    if center is not None:
        center = torch.as_tensor(center, device=device, dtype=dtype)
        return translate(
            transform(translate(face_set, -center), scale_matrix),
            center,
        )

    return transform(face_set, scale_matrix)
