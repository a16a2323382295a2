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

"""Relation between the two sides of a coupled interface."""

from enum import Enum


class TransformType(Enum):
    r"""How the neighbour side of a coupled interface relates to the owner side.

    - ``UNKNOWN``: not (yet) determined. As a request it means "auto-detect".
    - ``ROTATIONAL``: related by a rigid rotation, possibly combined with an
      offset.
    - ``TRANSLATIONAL``: related by a translation (parallel, opposite-facing
      planes), possibly with zero offset.
    """

    UNKNOWN = "unknown"
    ROTATIONAL = "rotational"
    TRANSLATIONAL = "translational"

    @classmethod
    def from_name(cls, name: "str | TransformType") -> "TransformType":
        """Parse a relation from its (case-insensitive) name.

        Parameters
        ----------
        name : str | TransformType
            ``"unknown"``, ``"rotational"`` or ``"translational"``. Members
            are returned unchanged.

        Raises
        ------
        ValueError
            If the name is not a known relation.
        """
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(repr(member.value) for member in cls)
            raise ValueError(
                f"Unknown transform type {name!r}; expected one of {valid}"
            ) from None
