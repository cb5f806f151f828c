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
"""Recovery of the current density from the magnetic flux.

Solves ``M j = -(K - B) psi`` with the essential DOFs of ``j`` fixed to
prescribed boundary data. Shared by the explicit evaluator and the
backward-Euler residual.
"""
import numpy as np
import numpy.typing as npt
from scipy.sparse import spmatrix

from .fem_2d.forms import eliminate_rhs

NDArray = npt.NDArray[np.floating]
IntArray = npt.NDArray[np.signedinteger]


class CurrentRecovery:
    """Auxiliary-field solve ``j = -M^{-1} KB psi``.

    Parameters
    ----------
    M : spmatrix
        Unconstrained mass matrix.
    KB : spmatrix
        Stiffness matrix minus boundary normal-gradient term.
    ess_tdof_list : IntArray
        Essential DOFs.
    solver
        Persistent solver context for the eliminated mass matrix
        (anything with ``mult(b, x)``).
    """

    def __init__(self, M: spmatrix, KB: spmatrix, ess_tdof_list: IntArray, solver) -> None:
        self.M = M
        self.KB = KB
        self.ess_tdof_list = ess_tdof_list
        self.solver = solver

    def __call__(self, psi: NDArray, j: NDArray, bdr: NDArray | None = None) -> NDArray:
        """Overwrite ``j`` with the current recovered from ``psi``.

        Parameters
        ----------
        psi : NDArray
            Magnetic flux.
        j : NDArray
            Current, used as initial guess and updated in place.
        bdr : NDArray, optional
            Field holding the boundary data on the essential DOFs. Defaults
            to ``j`` itself.
        """
        ess = self.ess_tdof_list
        if bdr is not None:
            j[ess] = bdr[ess]

        z = -(self.KB @ psi)
        B = eliminate_rhs(self.M, ess, j, z)
        self.solver.mult(B, j)
        return j
