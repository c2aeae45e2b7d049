"""
Periodic cell meshes generated with gmsh.

The mesher is driven by an explicit :class:`MeshingConfig`; faces are
named ``<axis>min``/``<axis>max`` (``min`` at the first bound given) and
opposite faces are meshed periodically so that their nodes match.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import gmsh
import numpy as np

from .datastructures import AXES, VOLUMIC, Mesh

log = logging.getLogger(__name__)


@dataclass
class MeshingConfig:
    """
    Parameters of the gmsh mesher.

    Parameters
    ----------
    mesh_size : float
        Target element size.
    structured : bool
        Use transfinite (structured) meshing with ``num_nodes`` per edge.
    num_nodes : int
        Nodes per edge in structured mode; ignored otherwise.
    refinement_points : list of (3,) sequences
        Points around which the mesh is refined.
    refinement_size : float, optional
        Element size close to the refinement points; ``mesh_size / 4`` when omitted.
    refinement_distances : (float, float)
        Distances over which the size goes from ``refinement_size`` to ``mesh_size``.
    msh_version : float
        Version of the written ``.msh`` file.
    workdir : path, optional
        Where the ``.msh`` file is written; a temporary directory otherwise.
    name : str
        gmsh model and file name.
    """

    mesh_size: float = 0.1
    structured: bool = False
    num_nodes: int = 11
    refinement_points: list = field(default_factory=list)
    refinement_size: Optional[float] = None
    refinement_distances: tuple = (0.05, 0.2)
    msh_version: float = 4.1
    workdir: Optional[str] = None
    name: str = "cell"


def _face_name(center: np.ndarray, lo: np.ndarray, hi: np.ndarray, dims: int, tol: float) -> str | None:
    for d in range(dims):
        if abs(center[d] - lo[d]) < tol:
            return f"{AXES[d]}min"
        if abs(center[d] - hi[d]) < tol:
            return f"{AXES[d]}max"
    return None


def _add_refinement(config: MeshingConfig) -> None:
    if not config.refinement_points:
        return
    size_min = config.refinement_size or config.mesh_size / 4
    tags = [gmsh.model.occ.addPoint(*np.asarray(p, dtype=float)[:3]) for p in config.refinement_points]
    gmsh.model.occ.synchronize()

    distance = gmsh.model.mesh.field.add("Distance")
    gmsh.model.mesh.field.setNumbers(distance, "PointsList", tags)
    threshold = gmsh.model.mesh.field.add("Threshold")
    gmsh.model.mesh.field.setNumber(threshold, "InField", distance)
    gmsh.model.mesh.field.setNumber(threshold, "SizeMin", size_min)
    gmsh.model.mesh.field.setNumber(threshold, "SizeMax", config.mesh_size)
    gmsh.model.mesh.field.setNumber(threshold, "DistMin", config.refinement_distances[0])
    gmsh.model.mesh.field.setNumber(threshold, "DistMax", config.refinement_distances[1])
    gmsh.model.mesh.field.setAsBackgroundMesh(threshold)


def _translation(d: int, length: float) -> list[float]:
    # 4x4 affine matrix, row-major, mapping the min face onto the max face
    T = np.eye(4)
    T[d, 3] = length
    return T.ravel().tolist()


def _generate(dims: int, bounds: list[tuple[float, float]], config: MeshingConfig) -> Mesh:
    """Build a box of dimension ``dims``, mesh it periodically and read it back."""
    lo = np.array([min(b) for b in bounds] + [0.0] * (3 - dims))
    hi = np.array([max(b) for b in bounds] + [0.0] * (3 - dims))
    # Faces at the first bound are the "min" faces
    flipped = [b[0] > b[1] for b in bounds]
    tol = 1e-8 * max(1.0, float(np.max(hi - lo)))

    gmsh.initialize()
    try:
        gmsh.option.setNumber("General.Terminal", 0)
        gmsh.model.add(config.name)
        L = hi - lo
        if dims == 2:
            gmsh.model.occ.addRectangle(lo[0], lo[1], 0.0, L[0], L[1])
        else:
            gmsh.model.occ.addBox(lo[0], lo[1], lo[2], L[0], L[1], L[2])
        gmsh.model.occ.synchronize()

        faces: dict[str, int] = {}
        for _, tag in gmsh.model.getEntities(dims - 1):
            center = np.array(gmsh.model.occ.getCenterOfMass(dims - 1, tag))
            name = _face_name(center, lo, hi, dims, tol)
            if name is None:
                continue
            d = AXES.index(name[0])
            if flipped[d]:
                name = f"{name[0]}{'max' if name.endswith('min') else 'min'}"
            faces[name] = tag

        # Periodic pairing always from the geometric low side to the high side
        for d in range(dims):
            low, high = f"{AXES[d]}min", f"{AXES[d]}max"
            if flipped[d]:
                low, high = high, low
            gmsh.model.mesh.setPeriodic(dims - 1, [faces[high]], [faces[low]], _translation(d, L[d]))

        for ref, name in enumerate(sorted(faces), start=1):
            gmsh.model.addPhysicalGroup(dims - 1, [faces[name]], tag=ref, name=name)
        volumes = [tag for _, tag in gmsh.model.getEntities(dims)]
        gmsh.model.addPhysicalGroup(dims, volumes, tag=len(faces) + 1, name=VOLUMIC)

        if config.structured:
            for dim in range(1, dims + 1):
                for _, tag in gmsh.model.getEntities(dim):
                    if dim == 1:
                        gmsh.model.mesh.setTransfiniteCurve(tag, config.num_nodes)
                    elif dim == 2:
                        gmsh.model.mesh.setTransfiniteSurface(tag)
                    else:
                        gmsh.model.mesh.setTransfiniteVolume(tag)
        else:
            gmsh.option.setNumber("Mesh.MeshSizeMax", config.mesh_size)
            _add_refinement(config)

        gmsh.model.mesh.generate(dims)
        gmsh.option.setNumber("Mesh.MshFileVersion", config.msh_version)

        workdir = Path(config.workdir) if config.workdir else Path(tempfile.mkdtemp(prefix="halfguide_"))
        workdir.mkdir(parents=True, exist_ok=True)
        path = workdir / f"{config.name}.msh"
        gmsh.write(str(path))
    finally:
        gmsh.finalize()

    mesh = Mesh.from_meshio(path, dimension=dims)
    log.info(f"Generated {dims}D cell '{config.name}': {mesh.num_points} nodes, "
             f"{len(mesh.elements(dims))} elements ({path})")
    return mesh


def generate_rectangle(x_bounds=(0.0, 1.0), y_bounds=(0.0, 1.0), config: MeshingConfig | None = None) -> Mesh:
    """Periodic triangular mesh of a rectangle, faces ``xmin, xmax, ymin, ymax``."""
    return _generate(2, [tuple(x_bounds), tuple(y_bounds)], config or MeshingConfig())


def generate_cuboid(
    x_bounds=(0.0, 1.0), y_bounds=(0.0, 1.0), z_bounds=(0.0, 1.0), config: MeshingConfig | None = None
) -> Mesh:
    """Periodic tetrahedral mesh of a cuboid, with the six ``<axis>min/max`` faces."""
    return _generate(3, [tuple(x_bounds), tuple(y_bounds), tuple(z_bounds)], config or MeshingConfig())
