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

"""Wavefront OBJ writers for inspecting coupled interfaces.

These writers produce plain-text OBJ (``v x y z``, ``f i j k ...`` and
``l i j`` records, 1-based) that any mesh viewer can open. They are meant for
diagnosing failed face matches: none of them modify the geometry they are
given.
"""

import logging
from pathlib import Path
from typing import TextIO

import numpy as np
import torch
from tensordict import TensorDict

from coupledmesh.errors import FaceMatchError
from coupledmesh.face_set import FaceSet
from coupledmesh.utilities._face_list import FaceList

logger = logging.getLogger(__name__)

_POINT_FORMAT = "v %.9g %.9g %.9g"


def _to_numpy(points: torch.Tensor) -> np.ndarray:
    return points.detach().to(device="cpu", dtype=torch.float64).numpy().reshape(-1, 3)


def write_obj_point(stream: TextIO, point: torch.Tensor, vert_index: int = 0) -> int:
    """Write a single ``v x y z`` record.

    ``vert_index`` is the number of vertices already written to ``stream``;
    the updated count is returned for the next call.
    """
    np.savetxt(stream, _to_numpy(point), fmt=_POINT_FORMAT)
    return vert_index + 1


def write_obj_points(
    stream: TextIO,
    points: torch.Tensor,
    labels: torch.Tensor | None = None,
    vert_index: int = 0,
) -> int:
    """Write one ``v`` record per labelled point, in label order.

    Parameters
    ----------
    stream : TextIO
        Open text stream.
    points : torch.Tensor
        Point coordinates, shape (n_points, 3).
    labels : torch.Tensor | None
        Point labels to write. All points when omitted.
    vert_index : int
        Number of vertices already written to ``stream``.

    Returns
    -------
    int
        The updated vertex count.
    """
    if labels is not None:
        points = points[torch.as_tensor(labels, dtype=torch.int64, device=points.device)]
    if len(points) > 0:
        np.savetxt(stream, _to_numpy(points), fmt=_POINT_FORMAT)
    return vert_index + len(points)


def write_obj_patch(
    path: str | Path,
    faces: FaceList,
    points: torch.Tensor,
) -> Path:
    """Write a face list as an OBJ surface.

    Only the points referenced by ``faces`` are written, renumbered
    compactly in increasing label order.

    Parameters
    ----------
    path : str | Path
        Output file.
    faces : FaceList
        Faces to write.
    points : torch.Tensor
        Point coordinates the faces refer to, shape (n_points, 3).

    Returns
    -------
    Path
        The written file.
    """
    path = Path(path)
    used, compact = torch.unique(faces.indices, return_inverse=True)
    offsets = faces.offsets.tolist()
    local = (compact + 1).tolist()

    with path.open("w") as stream:
        write_obj_points(stream, points, used)
        for face_i in range(faces.n_faces):
            labels = local[offsets[face_i] : offsets[face_i + 1]]
            stream.write("f " + " ".join(str(label) for label in labels) + "\n")

    return path


def write_obj_edge(
    stream: TextIO,
    p0: torch.Tensor,
    p1: torch.Tensor,
    vert_index: int,
) -> int:
    """Write a line segment as two ``v`` records and one ``l`` record.

    Parameters
    ----------
    stream : TextIO
        Open text stream.
    p0, p1 : torch.Tensor
        End points, shape (3,).
    vert_index : int
        Number of vertices already written to ``stream``.

    Returns
    -------
    int
        The updated vertex count, to be passed to the next call.
    """
    vert_index = write_obj_point(stream, p0, vert_index)
    vert_index = write_obj_point(stream, p1, vert_index)
    stream.write(f"l {vert_index - 1} {vert_index}\n")
    return vert_index


def write_match_failure(
    directory: str | Path,
    name: str,
    owner: FaceSet | TensorDict,
    candidate: FaceSet,
    error: FaceMatchError,
) -> list[Path]:
    """Dump a failed face match for visual inspection.

    Three files are written to ``directory``:

    - ``<name>_owner.obj``: the owner faces, or only the owner face centres
      when ``owner`` is ordering reference data.
    - ``<name>_candidate.obj``: the candidate faces, in the owner frame.
    - ``<name>_failed.obj``: for every failed owner face, an edge from its
      centre to the centre of the nearest candidate face.

    Parameters
    ----------
    directory : str | Path
        Output directory, created if missing.
    name : str
        File name prefix (usually the patch name).
    owner : FaceSet | TensorDict
        Owner side of the failed match, or its ordering reference data
        (see :func:`~coupledmesh.coupling.ordering.ordering_reference`).
    candidate : FaceSet
        Candidate side of the failed match.
    error : FaceMatchError
        The raised error, providing failed faces and nearest candidates.

    Returns
    -------
    list[Path]
        The written files.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    owner_path = directory / f"{name}_owner.obj"
    if isinstance(owner, FaceSet):
        write_obj_patch(owner_path, owner.faces, owner.points)
        owner_centres = owner.face_centres
    else:
        owner_centres = owner["centres"]
        with owner_path.open("w") as stream:
            write_obj_points(stream, owner_centres)

    written = [
        owner_path,
        write_obj_patch(
            directory / f"{name}_candidate.obj", candidate.faces, candidate.points
        ),
    ]

    candidate_centres = candidate.face_centres
    edges_path = directory / f"{name}_failed.obj"
    with edges_path.open("w") as stream:
        vert_index = 0
        for face_i in error.failed_faces.tolist():
            nearest = int(error.nearest_candidates[face_i])
            vert_index = write_obj_edge(
                stream,
                owner_centres[face_i],
                candidate_centres[nearest],
                vert_index,
            )
    written.append(edges_path)

    logger.warning(
        "Wrote face match diagnostics for %r (%d failed faces) to %s",
        name,
        len(error.failed_faces),
        directory,
    )
    return written
