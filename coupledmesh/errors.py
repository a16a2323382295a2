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

"""Exceptions raised when two sides of a coupled interface cannot be related.

Malformed input (empty faces, mismatched array lengths) is a programming
error and raises the built-in ``ValueError``/``TypeError``. The exceptions
below are for well-formed geometry that nevertheless does not describe a
valid coupling.
"""

import torch


class CouplingError(RuntimeError):
    """Base class for coupled-interface failures."""


class ClassificationError(CouplingError):
    """The two sides are neither rotational nor translational images.

    Parameters
    ----------
    transform : TransformType
        The relation that was requested (``UNKNOWN`` for auto-detection).
    reason : str
        Why each attempted relation was rejected.
    """

    def __init__(self, transform, reason: str):
        self.transform = transform
        self.reason = reason
        super().__init__(
            f"Could not establish a {transform.name.lower()} transform between "
            f"the coupled sides: {reason}"
        )


class FaceMatchError(CouplingError):
    """Face correspondence failed for one or more faces.

    Attributes
    ----------
    unmatched : torch.Tensor
        Owner face indices with no candidate within tolerance.
    ambiguous : torch.Tensor
        Owner face indices with more than one candidate within tolerance, or
        whose candidate is also claimed by another owner face.
    misaligned : torch.Tensor
        Owner face indices whose matched candidate has no vertex within
        tolerance of the owner anchor.
    nearest_distances : torch.Tensor
        Shape (n_owner_faces,). Distance from each owner face centre to the
        nearest candidate face centre.
    nearest_candidates : torch.Tensor
        Shape (n_owner_faces,). Index of that nearest candidate.
    """

    def __init__(
        self,
        unmatched: torch.Tensor,
        ambiguous: torch.Tensor,
        misaligned: torch.Tensor,
        nearest_distances: torch.Tensor,
        nearest_candidates: torch.Tensor,
    ):
        self.unmatched = unmatched
        self.ambiguous = ambiguous
        self.misaligned = misaligned
        self.nearest_distances = nearest_distances
        self.nearest_candidates = nearest_candidates

        parts = []
        for label, faces in (
            ("unmatched", unmatched),
            ("ambiguous", ambiguous),
            ("misaligned", misaligned),
        ):
            if len(faces) > 0:
                details = ", ".join(
                    f"{i} (nearest {nearest_distances[i].item():.3e})"
                    for i in faces.tolist()[:10]
                )
                parts.append(f"{len(faces)} {label} faces: {details}")
        super().__init__("Face matching failed. " + "; ".join(parts))

    @property
    def failed_faces(self) -> torch.Tensor:
        """Sorted union of all owner faces that failed."""
        return torch.unique(torch.cat([self.unmatched, self.ambiguous, self.misaligned]))
