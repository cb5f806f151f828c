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
"""Continuous P1 finite element space on a structured triangulated rectangle.

Node layout in (X, Y) within one square: bl=(0,0), br=(1,0), tl=(0,1), tr=(1,1).
Each square is split into
    left triangle  (bl, tl, br)
    right triangle (tr, br, tl)

Boundary attributes follow the usual Cartesian convention:
    1 = bottom (y = y0), 2 = right (x = x0 + Lx), 3 = top (y = y0 + Ly), 4 = left (x = x0)
"""
from functools import cached_property
from typing import Callable, Sequence

import numpy as np
import numpy.typing as npt

NDArray = npt.NDArray[np.floating]
IntArray = npt.NDArray[np.signedinteger]

NB_BDR_ATTRIBUTES = 4

# Barycentric coordinates of the 3-point rule, QUAD_BARY[q, i] = N_i(xi_q)
QUAD_BARY = np.array([[2/3, 1/6, 1/6],
                      [1/6, 2/3, 1/6],
                      [1/6, 1/6, 2/3]])
QUAD_WEIGHTS = np.array([1/3, 1/3, 1/3])  # fractions of the element area


class FiniteElementSpace:
    """Scalar H1 space with linear triangles on ``[x0, x0+Lx] x [y0, y0+Ly]``.

    Serial stand-in for a distributed finite element space: every node is a
    true degree of freedom owned by the local process.

    Parameters
    ----------
    Nx, Ny : int
        Number of squares in x and y.
    Lx, Ly : float, optional
        Domain size (the default is 1).
    x0, y0 : float, optional
        Lower left corner (the default is the origin).
    """

    def __init__(self, Nx: int, Ny: int,
                 Lx: float = 1., Ly: float = 1.,
                 x0: float = 0., y0: float = 0.) -> None:

        if Nx < 1 or Ny < 1:
            raise ValueError("Need at least one square in each direction.")

        self.Nx = int(Nx)
        self.Ny = int(Ny)
        self.Lx = float(Lx)
        self.Ly = float(Ly)
        self.x0 = float(x0)
        self.y0 = float(y0)
        self.dx = self.Lx / self.Nx
        self.dy = self.Ly / self.Ny

        self.nodes_per_row = self.Nx + 1

        ix, iy = np.meshgrid(np.arange(self.Nx + 1), np.arange(self.Ny + 1), indexing='xy')
        self.x = self.x0 + ix.ravel() * self.dx
        self.y = self.y0 + iy.ravel() * self.dy

        self.cells = self._build_cells()
        self._build_geometry()
        self._build_boundary()

    def __repr__(self) -> str:
        return (f"FiniteElementSpace(Nx={self.Nx}, Ny={self.Ny}, "
                f"Lx={self.Lx}, Ly={self.Ly}, ndofs={self.true_vsize})")

    # ---------------------------
    # Mesh construction
    # ---------------------------

    def node(self, i: int | IntArray, j: int | IntArray) -> int | IntArray:
        """Global node index of grid point (i, j)."""
        return i + j * self.nodes_per_row

    def _build_cells(self) -> IntArray:
        """Triangle connectivity, shape (2 * Nx * Ny, 3).

        Square s = i + j * Nx owns triangles 2s (left) and 2s + 1 (right).
        """
        i, j = np.meshgrid(np.arange(self.Nx), np.arange(self.Ny), indexing='xy')
        i = i.ravel()
        j = j.ravel()

        bl = self.node(i, j)
        br = self.node(i + 1, j)
        tl = self.node(i, j + 1)
        tr = self.node(i + 1, j + 1)

        cells = np.empty((2 * i.size, 3), dtype=int)
        cells[0::2] = np.column_stack([bl, tl, br])
        cells[1::2] = np.column_stack([tr, br, tl])
        return cells

    def _build_geometry(self) -> None:
        """Element areas and constant basis function gradients."""
        p = np.stack([self.x[self.cells], self.y[self.cells]], axis=-1)  # (ntri, 3, 2)
        d1 = p[:, 1] - p[:, 0]
        d2 = p[:, 2] - p[:, 0]
        det = d1[:, 0] * d2[:, 1] - d1[:, 1] * d2[:, 0]

        self.areas = 0.5 * np.abs(det)

        grads = np.empty((self.nb_cells, 3, 2))
        grads[:, 1, 0] = d2[:, 1] / det
        grads[:, 1, 1] = -d2[:, 0] / det
        grads[:, 2, 0] = -d1[:, 1] / det
        grads[:, 2, 1] = d1[:, 0] / det
        grads[:, 0] = -(grads[:, 1] + grads[:, 2])
        self.grads = grads

    def _build_boundary(self) -> None:
        """Boundary edges with attribute, owning triangle and outward normal."""
        i = np.arange(self.Nx)
        j = np.arange(self.Ny)
        sq_x = self.Nx

        # bottom: left triangle of squares (i, 0)
        bottom = (self.node(i, 0), self.node(i + 1, 0), 2 * i,
                  np.full(i.size, self.dx), (0., -1.), 1)
        # right: right triangle of squares (Nx - 1, j)
        right = (self.node(self.Nx, j), self.node(self.Nx, j + 1),
                 2 * ((self.Nx - 1) + j * sq_x) + 1,
                 np.full(j.size, self.dy), (1., 0.), 2)
        # top: right triangle of squares (i, Ny - 1)
        top = (self.node(i, self.Ny), self.node(i + 1, self.Ny),
               2 * (i + (self.Ny - 1) * sq_x) + 1,
               np.full(i.size, self.dx), (0., 1.), 3)
        # left: left triangle of squares (0, j)
        left = (self.node(0, j), self.node(0, j + 1), 2 * (j * sq_x),
                np.full(j.size, self.dy), (-1., 0.), 4)

        edges, tris, lengths, normals, attrs = [], [], [], [], []
        for n0, n1, tri, length, normal, attr in (bottom, right, top, left):
            edges.append(np.column_stack([n0, n1]))
            tris.append(tri)
            lengths.append(length)
            normals.append(np.tile(normal, (tri.size, 1)))
            attrs.append(np.full(tri.size, attr))

        self.bdr_edges = np.concatenate(edges)
        self.bdr_cells = np.concatenate(tris)
        self.bdr_lengths = np.concatenate(lengths)
        self.bdr_normals = np.concatenate(normals)
        self.bdr_attributes = np.concatenate(attrs)

    # ---------------------------
    # Sizes
    # ---------------------------

    @property
    def true_vsize(self) -> int:
        return self.x.size

    @property
    def nb_cells(self) -> int:
        return self.cells.shape[0]

    @cached_property
    def quad_points(self) -> tuple[NDArray, NDArray]:
        """Physical quadrature point coordinates, each of shape (ntri, 3)."""
        xq = QUAD_BARY @ self.x[self.cells].T
        yq = QUAD_BARY @ self.y[self.cells].T
        return xq.T, yq.T

    # ---------------------------
    # Boundary handling
    # ---------------------------

    def get_essential_true_dofs(self, ess_bdr: Sequence[int]) -> IntArray:
        """Sorted list of nodes on boundary attributes marked with 1.

        Parameters
        ----------
        ess_bdr : sequence of int
            One marker (0 or 1) per boundary attribute.

        Returns
        -------
        IntArray
            Essential true degrees of freedom.
        """
        ess_bdr = np.asarray(ess_bdr, dtype=int)
        if ess_bdr.size != NB_BDR_ATTRIBUTES:
            raise ValueError(f"Expected {NB_BDR_ATTRIBUTES} boundary markers, got {ess_bdr.size}.")

        marked = np.flatnonzero(ess_bdr) + 1
        mask = np.isin(self.bdr_attributes, marked)
        return np.unique(self.bdr_edges[mask].ravel())

    # ---------------------------
    # Grid functions
    # ---------------------------

    def project(self, fun: Callable) -> NDArray:
        """Nodal interpolation of a coefficient ``fun(x, y)``."""
        if not callable(fun):
            raise TypeError("Coefficient must be callable as fun(x, y).")
        vals = np.asarray(fun(self.x, self.y), dtype=float)
        return np.broadcast_to(vals, self.x.shape).copy()

    def gradient(self, u: NDArray) -> NDArray:
        """Elementwise constant gradient of a nodal field, shape (ntri, 2)."""
        return np.einsum('tk,tkd->td', u[self.cells], self.grads)
