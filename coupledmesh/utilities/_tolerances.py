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

"""Dtype-aware numerical tolerances for interface matching.

Two kinds of tolerance are used throughout :mod:`coupledmesh`:

- A *relative* match tolerance, :data:`MATCH_TOL`, which is multiplied by a
  per-face length scale (see :func:`coupledmesh.geometry.calc_face_tol`) to
  obtain an absolute matching distance.  Because the length scale comes
  from the faces themselves, the same relative tolerance is valid for
  micro-scale and kilometre-scale meshes alike.
- A dtype-aware floor, :func:`safe_eps`, used wherever a derived absolute
  tolerance could collapse to zero (degenerate faces) or a division could
  blow up.

Concretely, ``safe_eps(dtype) = torch.finfo(dtype).tiny ** 0.25``:

==========  =============  =============================
dtype       ``safe_eps``   ``1 / safe_eps ** 2``
==========  =============  =============================
float32     ~3.3e-10       ~9.2e+18  (well below 3.4e38)
float64     ~1.2e-77       ~6.7e+153 (well below 1.8e308)
==========  =============  =============================
"""

import math

import torch

MATCH_TOL: float = 1e-3
"""Process-wide default relative tolerance for geometric matching.

Read-only by convention; every public operation accepts a per-call override
(``match_tol=`` / ``abs_tol=``) instead of mutating this value.
"""


def safe_eps(dtype: torch.dtype) -> float:
    """Return a dtype-aware safe epsilon for preventing division by zero.

    The returned value is:

    - Small enough to leave any physically meaningful quantity untouched.
    - Large enough that ``1 / safe_eps(dtype) ** 2`` does not overflow.

    Parameters
    ----------
    dtype : torch.dtype
        The floating-point dtype (e.g. ``torch.float32``,
        ``torch.float64``).

    Returns
    -------
    float
        A small positive floor value equal to
        ``torch.finfo(dtype).tiny ** 0.25``.
    """
    return torch.finfo(dtype).tiny ** 0.25


def resolve_match_tol(match_tol: float | None = None) -> float:
    """Resolve a per-call tolerance override against :data:`MATCH_TOL`.

    Parameters
    ----------
    match_tol : float | None
        Override value. ``None`` selects the process-wide default.

    Returns
    -------
    float
        The tolerance to use.

    Raises
    ------
    ValueError
        If the override is not a finite, strictly positive number.
    """
    if match_tol is None:
        return MATCH_TOL

    match_tol = float(match_tol)
    if not math.isfinite(match_tol) or match_tol <= 0.0:
        raise ValueError(
            f"match tolerance must be a finite positive number, got {match_tol=}"
        )
    return match_tol
