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

"""Coupled-interface geometry: transform classification, face ordering and patches."""

from coupledmesh.coupling.classification import (
    TransformResult,
    classify_transform,
    estimate_axial_rotation,
    estimate_rotation,
)
from coupledmesh.coupling.cyclic import CyclicPatch
from coupledmesh.coupling.ordering import (
    FaceOrdering,
    apply_face_ordering,
    get_rotation,
    match_faces,
    order_faces,
    order_to_reference,
    ordering_reference,
    which_patch,
)
from coupledmesh.coupling.patch import CoupledPatch, PatchCoupling
from coupledmesh.coupling.processor import ProcessorPatch
from coupledmesh.coupling.tensors import CouplingTransform, calc_transform_tensors
from coupledmesh.coupling.transform_type import TransformType
