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

"""Geometric primitives for polygonal interface faces.

Face centres, area vectors, per-face matching tolerances and anchor points.
These are the building blocks used by both the transform classification and
the face ordering in :mod:`coupledmesh.coupling`.
"""

from coupledmesh.geometry._face_geometry import (
    calc_face_area_vectors,
    calc_face_centres,
    calc_face_tol,
    get_anchor_points,
)
