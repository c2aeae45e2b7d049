"""Structured simplicial meshes of segments, rectangles and cuboids.

For each direction the ``<axis>min`` face sits at the first bound given and
the ``<axis>max`` face at the second, so ``x_bounds=(0, -1)`` describes a
cell whose ``xmin`` face is at x = 0.
"""

from __future__ import annotations

from itertools import permutations

import numpy as np

from .datastructures import CUBOID_SIDES, RECTANGLE_SIDES, VOLUMIC, Mesh
from .exceptions import ConfigurationError


def _check_counts(*counts: int) -> None:
    if any(n < 1 for n in counts):
        raise ConfigurationError(f"Element counts must be positive, got {counts}")


def segment_mesh(x_bounds=(0.0, 1.0), nx: int = 10) -> Mesh:
    """1D mesh with point domains ``xmin``/``xmax``."""
    _check_counts(nx)
    x = np.linspace(x_bounds[0], x_bounds[1], nx + 1)
    segments = np.column_stack([np.arange(nx), np.arange(1, nx + 1)])
    mesh = Mesh(
        dimension=1,
        points=x,
        vertex_cells=np.array([[0], [nx]]),
        segments=segments,
        ref_vertices=np.array([1, 2]),
        ref_segments=np.ones(nx, dtype=np.int64),
    )
    mesh.add_domain("xmin", 0, reference=1)
    mesh.add_domain("xmax", 0, reference=2)
    mesh.add_domain(VOLUMIC, 1)
    return mesh


def rectangle_mesh(x_bounds=(0.0, 1.0), y_bounds=(0.0, 1.0), nx: int = 10, ny: int = 10) -> Mesh:
    """
    Triangulated rectangle, two triangles per grid cell.

    Boundary segments are tagged 1..4 in the order ``ymin, xmax, ymax, xmin``.
    """
    _check_counts(nx, ny)
    x = np.linspace(x_bounds[0], x_bounds[1], nx + 1)
    y = np.linspace(y_bounds[0], y_bounds[1], ny + 1)
    X, Y = np.meshgrid(x, y)
    points = np.column_stack([X.ravel(), Y.ravel()])

    def idx(i, j):
        return j * (nx + 1) + i

    i, j = np.meshgrid(np.arange(nx), np.arange(ny))
    i, j = i.ravel(), j.ravel()
    p00, p10, p01, p11 = idx(i, j), idx(i + 1, j), idx(i, j + 1), idx(i + 1, j + 1)
    triangles = np.vstack([
        np.column_stack([p00, p10, p11]),
        np.column_stack([p00, p11, p01]),
    ])

    ii, jj = np.arange(nx), np.arange(ny)
    sides = {
        "ymin": np.column_stack([idx(ii, 0), idx(ii + 1, 0)]),
        "xmax": np.column_stack([idx(nx, jj), idx(nx, jj + 1)]),
        "ymax": np.column_stack([idx(ii, ny), idx(ii + 1, ny)]),
        "xmin": np.column_stack([idx(0, jj), idx(0, jj + 1)]),
    }
    segments = np.vstack([sides[name] for name in RECTANGLE_SIDES])
    ref_segments = np.concatenate(
        [np.full(len(sides[name]), tag) for tag, name in enumerate(RECTANGLE_SIDES, start=1)]
    )

    mesh = Mesh(
        dimension=2,
        points=points,
        segments=segments,
        triangles=triangles,
        ref_segments=ref_segments,
        ref_triangles=np.ones(len(triangles), dtype=np.int64),
    )
    for tag, name in enumerate(RECTANGLE_SIDES, start=1):
        mesh.add_domain(name, 1, reference=tag)
    mesh.add_domain(VOLUMIC, 2)
    return mesh


def _split_square(q00, q10, q01, q11):
    # Diagonal from the lowest to the highest corner, matching the tetrahedra
    return [np.column_stack([q00, q10, q11]), np.column_stack([q00, q11, q01])]


def cuboid_mesh(
    x_bounds=(0.0, 1.0),
    y_bounds=(0.0, 1.0),
    z_bounds=(0.0, 1.0),
    nx: int = 4,
    ny: int = 4,
    nz: int = 4,
) -> Mesh:
    """
    Tetrahedral cuboid, six tetrahedra per grid cell (Kuhn subdivision).

    Boundary triangles are tagged 1..6 in the order
    ``xmin, xmax, ymin, ymax, zmin, zmax``.
    """
    _check_counts(nx, ny, nz)
    x = np.linspace(x_bounds[0], x_bounds[1], nx + 1)
    y = np.linspace(y_bounds[0], y_bounds[1], ny + 1)
    z = np.linspace(z_bounds[0], z_bounds[1], nz + 1)
    Z, Y, X = np.meshgrid(z, y, x, indexing="ij")
    points = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])

    def idx(i, j, k):
        return (k * (ny + 1) + j) * (nx + 1) + i

    k, j, i = (a.ravel() for a in np.meshgrid(np.arange(nz), np.arange(ny), np.arange(nx), indexing="ij"))
    tets = []
    for perm in permutations(range(3)):
        # Path 000 -> 111 adding one unit step per axis in the order of perm
        corner = [np.zeros_like(i), np.zeros_like(i), np.zeros_like(i)]
        path = [idx(i, j, k)]
        for axis in perm:
            corner[axis] = corner[axis] + 1
            path.append(idx(i + corner[0], j + corner[1], k + corner[2]))
        tets.append(np.column_stack(path))
    tetrahedra = np.vstack(tets)

    faces = {}
    a, b = np.meshgrid(np.arange(ny), np.arange(nz), indexing="ij")
    a, b = a.ravel(), b.ravel()
    for name, i0 in (("xmin", 0), ("xmax", nx)):
        faces[name] = np.vstack(_split_square(idx(i0, a, b), idx(i0, a + 1, b), idx(i0, a, b + 1), idx(i0, a + 1, b + 1)))
    a, b = np.meshgrid(np.arange(nx), np.arange(nz), indexing="ij")
    a, b = a.ravel(), b.ravel()
    for name, j0 in (("ymin", 0), ("ymax", ny)):
        faces[name] = np.vstack(_split_square(idx(a, j0, b), idx(a + 1, j0, b), idx(a, j0, b + 1), idx(a + 1, j0, b + 1)))
    a, b = np.meshgrid(np.arange(nx), np.arange(ny), indexing="ij")
    a, b = a.ravel(), b.ravel()
    for name, k0 in (("zmin", 0), ("zmax", nz)):
        faces[name] = np.vstack(_split_square(idx(a, b, k0), idx(a + 1, b, k0), idx(a, b + 1, k0), idx(a + 1, b + 1, k0)))

    triangles = np.vstack([faces[name] for name in CUBOID_SIDES])
    ref_triangles = np.concatenate(
        [np.full(len(faces[name]), tag) for tag, name in enumerate(CUBOID_SIDES, start=1)]
    )

    mesh = Mesh(
        dimension=3,
        points=points,
        triangles=triangles,
        tetrahedra=tetrahedra,
        ref_triangles=ref_triangles,
        ref_tetrahedra=np.ones(len(tetrahedra), dtype=np.int64),
    )
    for tag, name in enumerate(CUBOID_SIDES, start=1):
        mesh.add_domain(name, 2, reference=tag)
    mesh.add_domain(VOLUMIC, 3)
    return mesh
