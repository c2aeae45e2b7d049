"""Mesh and domain data structures.

A :class:`Mesh` holds the points and the simplices of every topological
dimension. Named :class:`Domain` objects (faces, the ``volumic`` part) are
views on it whose ``id_points`` are sorted by coordinates, so facing faces
of a periodic cell list their points in the same order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError
from .interpolation import locate_points

if TYPE_CHECKING:
    import meshio

# Tolerance for matching boundary points (floating-point comparison)
BOUNDARY_TOL = 1e-10

AXES = "xyz"

# Side naming of rectangular cells, in the order the sides are generated
RECTANGLE_SIDES = ("ymin", "xmax", "ymax", "xmin")
CUBOID_SIDES = ("xmin", "xmax", "ymin", "ymax", "zmin", "zmax")

# meshio cell type for each topological dimension
CELL_TYPES = {0: "vertex", 1: "line", 2: "triangle", 3: "tetra"}

VOLUMIC = "volumic"


def face_names(direction: int) -> tuple[str, str]:
    """Names of the two faces orthogonal to ``direction`` (0-based)."""
    return f"{AXES[direction]}min", f"{AXES[direction]}max"


def _empty_cells(n: int) -> NDArray[np.int64]:
    return np.zeros((0, n), dtype=np.int64)


@dataclass(eq=False)
class Domain:
    """
    Named set of mesh elements of a given topological dimension.

    ``id_points`` lists the points of the domain sorted lexicographically by
    their coordinates, so that the points of two facing periodic faces come
    out in corresponding order.
    """

    name: str
    dimension: int
    elements: NDArray[np.int64]
    mesh: Mesh = field(repr=False)
    reference: int = -1

    id_points: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.elements = np.asarray(self.elements, dtype=np.int64).reshape(-1, self.dimension + 1)
        ids = np.unique(self.elements)
        coords = np.round(self.mesh.points[ids], 10)
        self.id_points = ids[np.lexsort(coords.T[::-1])]

    @property
    def num_points(self) -> int:
        return len(self.id_points)

    @property
    def num_elements(self) -> int:
        return len(self.elements)

    @property
    def points(self) -> NDArray[np.float64]:
        """Coordinates of the domain points, in ``id_points`` order."""
        return self.mesh.points[self.id_points]

    @property
    def vertices(self) -> NDArray[np.float64]:
        """Element vertex coordinates, shape (E, dimension + 1, 3)."""
        return self.mesh.points[self.elements]

    def bounds(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        pts = self.points
        return pts.min(axis=0), pts.max(axis=0)

    def locate(self, points: NDArray[np.float64], tol: float = 1e-10):
        """
        Find the element containing each point.

        Returns
        -------
        elements : ndarray (n,)
            Index into ``self.elements`` (-1 when outside the domain).
        barycentric : ndarray (n, dimension + 1)
            Barycentric coordinates in that element.
        """
        if self.dimension != self.mesh.dimension:
            raise ConfigurationError(
                f"Point location needs a {self.mesh.dimension}D domain, '{self.name}' is {self.dimension}D"
            )
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        return locate_points(self.vertices[:, :, : self.dimension], points[:, : self.dimension], tol)


@dataclass(eq=False)
class Mesh:
    """
    Simplicial mesh in 1 to 3 dimensions.

    Points are stored padded to 3 coordinates. Connectivity arrays use
    0-based point indices; ``ref_*`` hold the integer reference tag of each
    element. Domains are kept in insertion order.
    """

    dimension: int
    points: NDArray[np.float64]
    vertex_cells: NDArray[np.int64] = field(default_factory=lambda: _empty_cells(1))
    segments: NDArray[np.int64] = field(default_factory=lambda: _empty_cells(2))
    triangles: NDArray[np.int64] = field(default_factory=lambda: _empty_cells(3))
    tetrahedra: NDArray[np.int64] = field(default_factory=lambda: _empty_cells(4))
    ref_vertices: NDArray[np.int64] = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    ref_segments: NDArray[np.int64] = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    ref_triangles: NDArray[np.int64] = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    ref_tetrahedra: NDArray[np.int64] = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    domains: dict[str, Domain] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not 1 <= self.dimension <= 3:
            raise ConfigurationError(f"Mesh dimension must be 1, 2 or 3, got {self.dimension}")
        pts = np.asarray(self.points, dtype=np.float64)
        if pts.ndim == 1:
            pts = pts[:, None]
        self.points = np.zeros((pts.shape[0], 3))
        self.points[:, : pts.shape[1]] = pts

    @property
    def num_points(self) -> int:
        return len(self.points)

    def elements(self, dim: int) -> NDArray[np.int64]:
        return (self.vertex_cells, self.segments, self.triangles, self.tetrahedra)[dim]

    def references(self, dim: int) -> NDArray[np.int64]:
        return (self.ref_vertices, self.ref_segments, self.ref_triangles, self.ref_tetrahedra)[dim]

    def bounds(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return self.points.min(axis=0), self.points.max(axis=0)

    def add_domain(self, name: str, dim: int, reference: int | None = None, elements=None) -> Domain:
        """Register a domain from a reference tag or an explicit element array."""
        if elements is None:
            if reference is None:
                elements = self.elements(dim)
            else:
                elements = self.elements(dim)[self.references(dim) == reference]
        domain = Domain(name, dim, elements, self, -1 if reference is None else reference)
        self.domains[name] = domain
        return domain

    def domain(self, name: str) -> Domain:
        try:
            return self.domains[name]
        except KeyError:
            raise KeyError(f"Unknown domain '{name}' (available: {list(self.domains)})") from None

    @classmethod
    def from_meshio(cls, mesh: meshio.Mesh | str | Path, dimension: int | None = None) -> Mesh:
        """
        Create a Mesh from a meshio mesh or mesh file.

        Domains are built from the gmsh physical groups (``field_data`` names
        and ``gmsh:physical`` cell tags). A ``volumic`` domain holding every
        top-dimensional element is always added.

        Parameters
        ----------
        mesh : meshio.Mesh or str or Path
            Either a meshio Mesh object or path to a mesh file.
        dimension : int, optional
            Mesh dimension. Defaults to the highest dimension with cells.

        Returns
        -------
        Mesh
        """
        import meshio as mio

        if isinstance(mesh, (str, Path)):
            mesh = mio.read(mesh)

        by_type = {name: dim for dim, name in CELL_TYPES.items()}
        tags = mesh.cell_data.get("gmsh:physical")

        cells: dict[int, list[NDArray]] = {d: [] for d in CELL_TYPES}
        refs: dict[int, list[NDArray]] = {d: [] for d in CELL_TYPES}
        for i, block in enumerate(mesh.cells):
            if block.type not in by_type:
                continue
            dim = by_type[block.type]
            cells[dim].append(np.asarray(block.data, dtype=np.int64))
            if tags is not None:
                refs[dim].append(np.asarray(tags[i], dtype=np.int64).ravel())
            else:
                refs[dim].append(np.zeros(len(block.data), dtype=np.int64))

        if dimension is None:
            dimension = max(d for d in cells if cells[d])
        if not cells[dimension]:
            raise ConfigurationError(f"No {CELL_TYPES[dimension]} cells found in mesh")

        def stack(dim):
            if not cells[dim]:
                return _empty_cells(dim + 1), np.zeros(0, dtype=np.int64)
            return np.vstack(cells[dim]), np.concatenate(refs[dim])

        (v, rv), (s, rs), (t, rt), (k, rk) = (stack(d) for d in range(4))
        instance = cls(
            dimension=dimension,
            points=np.asarray(mesh.points, dtype=np.float64),
            vertex_cells=v, segments=s, triangles=t, tetrahedra=k,
            ref_vertices=rv, ref_segments=rs, ref_triangles=rt, ref_tetrahedra=rk,
        )

        for name, (tag, dim) in getattr(mesh, "field_data", {}).items():
            if dim <= dimension:
                instance.add_domain(name, int(dim), reference=int(tag))
        instance.add_domain(VOLUMIC, dimension)
        return instance
