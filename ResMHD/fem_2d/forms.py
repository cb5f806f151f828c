#
# Copyright 2026 ResMHD developers
#
# ### MIT License
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
#
"""Assembly of bilinear and linear forms on a P1 space, and essential BC elimination.

All matrices are returned in CSR format. Element contributions are
scattered in COO format, duplicates are summed on conversion.
"""
from typing import Callable

import numpy as np
import numpy.typing as npt
from scipy.sparse import coo_matrix, csr_matrix, diags, spmatrix

from .space import QUAD_BARY, QUAD_WEIGHTS, FiniteElementSpace

NDArray = npt.NDArray[np.floating]
IntArray = npt.NDArray[np.signedinteger]

# Element mass matrix of a linear triangle divided by its area
_ELEM_MASS = (np.ones((3, 3)) + np.eye(3)) / 12.


def _scatter(space: FiniteElementSpace, local: NDArray) -> csr_matrix:
    """Sum element matrices of shape (ntri, 3, 3) into a global CSR matrix."""
    rows = np.broadcast_to(space.cells[:, :, None], local.shape).ravel()
    cols = np.broadcast_to(space.cells[:, None, :], local.shape).ravel()
    n = space.true_vsize
    return coo_matrix((local.ravel(), (rows, cols)), shape=(n, n)).tocsr()


# ---------------------------
# Bilinear forms
# ---------------------------

def assemble_mass(space: FiniteElementSpace) -> csr_matrix:
    """Mass matrix M_ij = (N_j, N_i)."""
    local = space.areas[:, None, None] * _ELEM_MASS[None, :, :]
    return _scatter(space, local)


def assemble_diffusion(space: FiniteElementSpace, coeff: float = 1.) -> csr_matrix:
    """Stiffness matrix K_ij = (coeff grad N_j, grad N_i)."""
    local = coeff * space.areas[:, None, None] * np.einsum('tid,tjd->tij', space.grads, space.grads)
    return _scatter(space, local)


def assemble_boundary_flux(space: FiniteElementSpace) -> csr_matrix:
    """Boundary normal-gradient matrix B_ij = <grad N_j . n, N_i> on the domain boundary.

    With the stiffness matrix K, ``K - B`` is the weak form of the negative
    Laplacian without integration by parts dropping the boundary term.
    """
    grads = space.grads[space.bdr_cells]                              # (nedge, 3, 2)
    dn = np.einsum('ejd,ed->ej', grads, space.bdr_normals)            # (nedge, 3)
    vals = 0.5 * space.bdr_lengths[:, None, None] * dn[:, None, :]    # (nedge, 1, 3)
    vals = np.broadcast_to(vals, (dn.shape[0], 2, 3))

    rows = np.broadcast_to(space.bdr_edges[:, :, None], vals.shape).ravel()
    cols = np.broadcast_to(space.cells[space.bdr_cells][:, None, :], vals.shape).ravel()
    n = space.true_vsize
    return coo_matrix((vals.ravel(), (rows, cols)), shape=(n, n)).tocsr()


def assemble_convection(space: FiniteElementSpace, velocity: NDArray) -> csr_matrix:
    """Convection matrix N_ij = (v . grad N_j, N_i) for an elementwise constant velocity.

    Parameters
    ----------
    space : FiniteElementSpace
        Discretization.
    velocity : NDArray
        Advecting field per triangle, shape (ntri, 2).
    """
    vgrad = np.einsum('td,tjd->tj', velocity, space.grads)           # (ntri, 3)
    local = (space.areas / 3.)[:, None, None] * np.broadcast_to(vgrad[:, None, :], (space.nb_cells, 3, 3))
    return _scatter(space, local)


def perp_gradient(space: FiniteElementSpace, u: NDArray) -> NDArray:
    """Advecting field (du/dy, -du/dx) of a scalar potential, per triangle."""
    g = space.gradient(u)
    return np.column_stack([g[:, 1], -g[:, 0]])


# ---------------------------
# Linear forms
# ---------------------------

def assemble_domain_lf(space: FiniteElementSpace, fun: Callable) -> NDArray:
    """Load vector b_i = (f, N_i) with the 3-point rule."""
    if not callable(fun):
        raise TypeError("Source term must be callable as fun(x, y).")

    xq, yq = space.quad_points
    fq = np.broadcast_to(np.asarray(fun(xq, yq), dtype=float), xq.shape)  # (ntri, 3)

    # local[t, i] = area_t * sum_q w_q f(x_q) N_i(x_q)
    local = space.areas[:, None] * ((fq * QUAD_WEIGHTS[None, :]) @ QUAD_BARY)

    b = np.zeros(space.true_vsize)
    np.add.at(b, space.cells, local)
    return b


# ---------------------------
# Essential boundary conditions
# ---------------------------

def _interior_mask(n: int, ess: IntArray) -> NDArray:
    mask = np.ones(n)
    mask[ess] = 0.
    return mask


def form_system_matrix(A: spmatrix, ess: IntArray) -> csr_matrix:
    """Eliminate essential rows and columns, keeping a unit diagonal."""
    keep = _interior_mask(A.shape[0], ess)
    D = diags(keep)
    return (D @ A @ D + diags(1. - keep)).tocsr()


def eliminate_rhs(A: spmatrix, ess: IntArray, x: NDArray, b: NDArray) -> NDArray:
    """Right-hand side matching :func:`form_system_matrix`.

    Interior rows are corrected by the boundary values, essential rows are set
    to the prescribed values ``x[ess]``.
    """
    xe = np.zeros_like(b)
    xe[ess] = x[ess]
    B = b - A @ xe
    B[ess] = x[ess]
    return B


def form_linear_system(A: spmatrix, ess: IntArray, x: NDArray,
                       b: NDArray) -> tuple[csr_matrix, NDArray, NDArray]:
    """Apply essential boundary data ``x`` to ``A x = b``.

    Returns
    -------
    tuple
        Eliminated matrix, initial guess (copy of ``x``) and right-hand side.
    """
    return form_system_matrix(A, ess), x.copy(), eliminate_rhs(A, ess, x, b)


def zero_rows(A: spmatrix, rows: IntArray, diag: float = 1.) -> csr_matrix:
    """Replace the given rows by ``diag`` times the corresponding identity rows."""
    keep = _interior_mask(A.shape[0], rows)
    return (diags(keep) @ A + diag * diags(1. - keep)).tocsr()
