"""Periodic half-guide solver based on P1 finite elements.

This package solves time-harmonic wave problems in semi-infinite periodic
waveguides by reducing them to one periodicity cell, and rebuilds
whole-line fields with the Floquet-Bloch transform.

Main components:
- Mesh, Domain: simplicial meshes with named domains
- global_matrix, assemble, integrate: P1 finite element assembly
- Operator, Form: algebra of bilinear forms
- EssentialConditions, reduce: affine constraints on DOFs
- SpectralBasis, BoundaryConditions: spectral representation of the faces
- periodic_half_guide: half-guide solver (Riccati equation)
- inverse_floquet_transform: Floquet-Bloch reconstruction
"""

from .exceptions import (
    BatchError,
    ConfigurationError,
    DegenerateElementError,
    ModeSelectionError,
    ShapeMismatchError,
)
from .quadrature import QuadratureRule, quadrature_rule
from .datastructures import VOLUMIC, Domain, Mesh, face_names
from .mesh import cuboid_mesh, rectangle_mesh, segment_mesh
from .elements import elementary_matrices, elementary_matrix, shape_functions
from .forms import (
    Form,
    Operator,
    derivative,
    form_add,
    form_neg,
    form_scale,
    form_sub,
    gradient,
    identity,
    operator_transform,
    operator_with_coefficient,
    pair,
)
from .assembly import assemble, global_matrix, integrate, intg_du_dv, intg_gradu_gradv, intg_u_v
from .constraints import (
    EssentialConditions,
    ReducedConditions,
    periodicity_conditions,
    reduce,
    trace_conditions,
)
from .spectral import FourierBasis, PeriodicLagrangeBasis, SpectralBasis
from .boundary import (
    PROJECTION,
    WEAK_EVALUATION,
    BoundaryConditions,
    FunctionCoefficient,
    ScalarCoefficient,
    SpectralOperator,
    intg_tu_v,
    to_projection,
)
from .solvers import HalfGuideSolution, SolverOptions, periodic_half_guide, solve_cell_problem
from .floquet import (
    cell_offsets,
    floquet_transform,
    floquet_wavenumbers,
    floquet_weight,
    inverse_floquet_transform,
)
from .interpolation import interpolate, wrap_periodic

__all__ = [
    # Errors
    "BatchError",
    "ConfigurationError",
    "DegenerateElementError",
    "ModeSelectionError",
    "ShapeMismatchError",
    # Mesh
    "Mesh",
    "Domain",
    "VOLUMIC",
    "face_names",
    "segment_mesh",
    "rectangle_mesh",
    "cuboid_mesh",
    # Elements and assembly
    "QuadratureRule",
    "quadrature_rule",
    "shape_functions",
    "elementary_matrix",
    "elementary_matrices",
    "global_matrix",
    "assemble",
    "integrate",
    "intg_u_v",
    "intg_gradu_gradv",
    "intg_du_dv",
    # Forms
    "Operator",
    "Form",
    "identity",
    "derivative",
    "gradient",
    "pair",
    "operator_transform",
    "operator_with_coefficient",
    "form_add",
    "form_scale",
    "form_neg",
    "form_sub",
    # Essential conditions
    "EssentialConditions",
    "ReducedConditions",
    "trace_conditions",
    "periodicity_conditions",
    "reduce",
    # Spectral bases and boundary coefficients
    "SpectralBasis",
    "PeriodicLagrangeBasis",
    "FourierBasis",
    "ScalarCoefficient",
    "FunctionCoefficient",
    "SpectralOperator",
    "WEAK_EVALUATION",
    "PROJECTION",
    "BoundaryConditions",
    "intg_tu_v",
    "to_projection",
    # Solvers
    "SolverOptions",
    "HalfGuideSolution",
    "periodic_half_guide",
    "solve_cell_problem",
    # Floquet-Bloch
    "floquet_wavenumbers",
    "floquet_weight",
    "floquet_transform",
    "inverse_floquet_transform",
    "cell_offsets",
    "interpolate",
    "wrap_periodic",
]
