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

"""Geometric correspondence between the two sides of coupled mesh interfaces.

:mod:`coupledmesh` answers three questions for a pair of coupled face sets
(the halves of a cyclic patch, or the two sides of a processor boundary):

1. How are the sides related? Rotational, translational, or a rotation plus
   an offset (:func:`~coupledmesh.coupling.classify_transform`).
2. Which tensors map one side onto the other
   (:func:`~coupledmesh.coupling.calc_transform_tensors`)?
3. Which face of one side corresponds to which face of the other, and how
   must each face's vertex list be rotated so the anchors agree
   (:func:`~coupledmesh.coupling.order_faces`)?
"""

from coupledmesh.coupling import (
    CoupledPatch,
    CouplingTransform,
    CyclicPatch,
    FaceOrdering,
    PatchCoupling,
    ProcessorPatch,
    TransformResult,
    TransformType,
    apply_face_ordering,
    calc_transform_tensors,
    classify_transform,
    get_rotation,
    match_faces,
    order_faces,
    which_patch,
)
from coupledmesh.errors import ClassificationError, CouplingError, FaceMatchError
from coupledmesh.face_set import FaceSet
from coupledmesh.utilities._face_list import FaceList, build_face_list
from coupledmesh.utilities._tolerances import MATCH_TOL

__version__ = "0.1.0a0"
