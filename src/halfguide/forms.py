"""Symbolic bilinear forms built from derivative combinations.

An :class:`Operator` is a stack of derivative combinations, one row per
vector component: row ``I`` of ``alpha`` stands for
``alpha[I, 0] u + alpha[I, 1] du/dx + alpha[I, 2] du/dy + alpha[I, 3] du/dz``.
Pairing a trial operator with a test operator gives a :class:`Form`, the
integral of the dot product of the two images (test side conjugated).

Forms and operators are immutable. The builders (``form_add``,
``form_scale``...) return new values; the arithmetic dunders only delegate
to them, so ``grad(u) * grad(v) - omega**2 * id(u) * id(v)`` reads as
``form_sub(pair(gradient(2), gradient(2)), form_scale(omega**2, pair(...)))``.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Number
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError

CoefficientFn = Callable[[NDArray[np.float64]], NDArray]


def _frozen_alpha(alpha) -> NDArray:
    alpha = np.atleast_2d(np.asarray(alpha))
    if alpha.ndim != 2 or alpha.shape[1] > 4:
        raise ConfigurationError(f"Derivative combinations must be (p, <=4), got {alpha.shape}")
    out = np.zeros((alpha.shape[0], 4), dtype=np.result_type(alpha.dtype, np.float64))
    out[:, : alpha.shape[1]] = alpha
    out.setflags(write=False)
    return out


def as_coefficient_matrix(values: NDArray, n: int, rows: int, cols: int) -> NDArray:
    """Coefficient values as (n, rows, cols); scalars act as multiples of identity."""
    values = np.asarray(values)
    if values.ndim <= 1:
        if rows != cols:
            raise ConfigurationError(
                f"Scalar coefficient needs square components, got {rows}x{cols}"
            )
        return np.broadcast_to(values.reshape(-1, 1, 1), (n, 1, 1)) * np.eye(rows)
    if values.shape[1:] != (rows, cols):
        raise ConfigurationError(
            f"Coefficient of shape {values.shape[1:]} does not match {rows}x{cols} components"
        )
    return values


@dataclass(frozen=True, eq=False)
class Operator:
    """Linear differential operator ``B(x) (alpha . (u, grad u))`` of order <= 1."""

    __array_ufunc__ = None

    alpha: NDArray
    coef: Optional[CoefficientFn] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpha", _frozen_alpha(self.alpha))

    @property
    def num_components(self) -> int:
        return self.alpha.shape[0]

    def output_components(self) -> int:
        """Number of rows of the image, after the coefficient is applied."""
        if self.coef is None:
            return self.num_components
        values = np.asarray(self.coef(np.zeros((1, 3))))
        return 1 if values.ndim <= 1 else values.shape[1]

    def coefficient_values(self, points: NDArray[np.float64]) -> NDArray:
        """Coefficient matrix at ``points``, shape (n, q, p)."""
        n, p = len(points), self.num_components
        if self.coef is None:
            return np.broadcast_to(np.eye(p), (n, p, p))
        values = np.asarray(self.coef(points))
        if values.ndim <= 1:
            return as_coefficient_matrix(values, n, p, p)
        if values.shape[2] != p:
            raise ConfigurationError(
                f"Operator coefficient has {values.shape[2]} columns for {p} components"
            )
        return values

    def __add__(self, other):
        return operator_add(self, other)

    def __sub__(self, other):
        return operator_add(self, operator_scale(-1.0, other))

    def __neg__(self):
        return operator_scale(-1.0, self)

    def __rmul__(self, c):
        return operator_scale(c, self)

    def __mul__(self, other):
        if isinstance(other, Operator):
            return pair(self, other)
        return operator_scale(other, self)


@dataclass(frozen=True, eq=False)
class FormTerm:
    """``scale * int fun_IJ (alpha_u[J] . U) conj(alpha_v[I] . V)`` summed over I, J."""

    alpha_u: NDArray
    alpha_v: NDArray
    fun: Optional[CoefficientFn] = None
    scale: complex = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "alpha_u", _frozen_alpha(self.alpha_u))
        object.__setattr__(self, "alpha_v", _frozen_alpha(self.alpha_v))
        if self.fun is None and self.alpha_u.shape[0] != self.alpha_v.shape[0]:
            raise ConfigurationError(
                f"Identity coefficient needs as many trial ({self.alpha_u.shape[0]}) "
                f"as test ({self.alpha_v.shape[0]}) components"
            )

    def coefficient_values(self, points: NDArray[np.float64]) -> NDArray:
        """Coefficient matrix at ``points``, shape (n, p_v, p_u), scale included."""
        p_v, p_u = self.alpha_v.shape[0], self.alpha_u.shape[0]
        if self.fun is None:
            return self.scale * np.broadcast_to(np.eye(p_u), (len(points), p_u, p_u))
        return self.scale * as_coefficient_matrix(self.fun(points), len(points), p_v, p_u)


@dataclass(frozen=True, eq=False)
class Form:
    """Sum of :class:`FormTerm`; the empty form is zero."""

    __array_ufunc__ = None

    terms: tuple = ()

    @classmethod
    def from_rows(cls, alpha_u, alpha_v, fun: Optional[CoefficientFn] = None) -> Form:
        return cls((FormTerm(alpha_u, alpha_v, fun),))

    def __add__(self, other):
        return form_add(self, other)

    def __sub__(self, other):
        return form_sub(self, other)

    def __neg__(self):
        return form_neg(self)

    def __rmul__(self, c):
        return form_scale(c, self)

    def __mul__(self, c):
        return form_scale(c, self)


# ----------------------------------------------------------------------------
# Primitive operators
# ----------------------------------------------------------------------------


def identity() -> Operator:
    return Operator(np.array([[1.0, 0.0, 0.0, 0.0]]))


def derivative(direction: int) -> Operator:
    """Partial derivative along ``direction`` (0 = x, 1 = y, 2 = z)."""
    if direction not in (0, 1, 2):
        raise ConfigurationError(f"Invalid derivative direction {direction}")
    alpha = np.zeros((1, 4))
    alpha[0, direction + 1] = 1.0
    return Operator(alpha)


def gradient(dim: int) -> Operator:
    """Gradient in ``dim`` dimensions, one component per direction."""
    if dim not in (1, 2, 3):
        raise ConfigurationError(f"Invalid gradient dimension {dim}")
    alpha = np.zeros((dim, 4))
    alpha[:, 1: dim + 1] = np.eye(dim)
    return Operator(alpha)


# ----------------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------------


def operator_add(a: Operator, b: Operator) -> Operator:
    if a.coef is not None or b.coef is not None:
        raise ConfigurationError("Cannot add operators carrying coefficient functions")
    if a.num_components != b.num_components:
        raise ConfigurationError(
            f"Cannot add operators with {a.num_components} and {b.num_components} components"
        )
    return Operator(a.alpha + b.alpha)


def operator_scale(c, op: Operator) -> Operator:
    if not isinstance(c, Number):
        raise ConfigurationError(f"Operators can only be scaled by numbers, got {type(c).__name__}")
    return Operator(c * op.alpha, op.coef)


def operator_transform(T, op: Operator) -> Operator:
    """Constant linear map ``T`` (q, p) applied to the components of ``op``."""
    T = np.atleast_2d(np.asarray(T))
    if T.shape[1] != op.num_components:
        raise ConfigurationError(
            f"Transform of shape {T.shape} cannot act on {op.num_components} components"
        )
    if op.coef is not None:
        return operator_with_coefficient(lambda P: T, op)
    return Operator(T @ op.alpha)


def operator_with_coefficient(fun: CoefficientFn, op: Operator) -> Operator:
    """Multiply ``op`` on the left by ``fun(x)`` (scalar (n,) or matrix (n, q, p))."""

    def coef(P):
        inner = op.coefficient_values(P)
        outer = np.asarray(fun(P))
        if outer.ndim <= 1:
            return np.broadcast_to(outer, (len(P),)).reshape(-1, 1, 1) * inner
        if outer.ndim == 2:
            outer = np.broadcast_to(outer, (len(P),) + outer.shape)
        return np.einsum("nqr,nrp->nqp", outer, inner)

    return Operator(op.alpha, coef)


def pair(op_u: Operator, op_v: Operator) -> Form:
    """Form ``int (op_u u) . conj(op_v v)``."""
    q_u, q_v = op_u.output_components(), op_v.output_components()
    if q_u != q_v:
        raise ConfigurationError(
            f"Cannot pair a {q_u}-component trial operator with a {q_v}-component test operator"
        )
    if op_u.coef is None and op_v.coef is None:
        return Form.from_rows(op_u.alpha, op_v.alpha)

    def fun(P):
        Bu = op_u.coefficient_values(P)
        Bv = op_v.coefficient_values(P)
        return np.einsum("nqi,nqj->nij", Bv.conj(), Bu)

    return Form.from_rows(op_u.alpha, op_v.alpha, fun)


def form_add(a: Form, b: Form) -> Form:
    return Form(a.terms + b.terms)


def form_scale(c, form: Form) -> Form:
    """Multiply by a number or by a scalar function of the position."""
    if isinstance(c, Number):
        return Form(tuple(
            FormTerm(t.alpha_u, t.alpha_v, t.fun, c * t.scale) for t in form.terms
        ))
    if not callable(c):
        raise ConfigurationError(f"Forms can only be scaled by numbers or functions, got {type(c).__name__}")

    def scaled(term: FormTerm) -> FormTerm:
        def fun(P):
            return np.asarray(c(P)).reshape(-1, 1, 1) * term.coefficient_values(P)
        return FormTerm(term.alpha_u, term.alpha_v, fun)

    return Form(tuple(scaled(t) for t in form.terms))


def form_neg(form: Form) -> Form:
    return form_scale(-1.0, form)


def form_sub(a: Form, b: Form) -> Form:
    return form_add(a, form_neg(b))
