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
"""Discretization and linear-algebra collaborators of the MHD operator."""
from scipy.sparse import spmatrix

from .space import FiniteElementSpace
from .scipy_system import ScipyKrylovSolver
from ..errors import ConfigurationError

BACKENDS = ('scipy', 'petsc')


def make_linear_solver(mat: spmatrix, backend: str = "scipy", **settings):
    """Create a persistent Krylov solver context for ``mat``.

    Parameters
    ----------
    mat : spmatrix
        System matrix.
    backend : str, optional
        "scipy" (serial fallback) or "petsc". Default: "scipy".
    **settings
        Forwarded to the solver class (method, preconditioner, rtol, atol,
        max_iter, iterative_mode, name).
    """
    if backend == 'scipy':
        return ScipyKrylovSolver(mat, **settings)
    elif backend == 'petsc':
        from .petsc_system import PETScKrylovSolver
        return PETScKrylovSolver(mat, **settings)
    else:
        raise ConfigurationError(f"Unknown linear algebra backend '{backend}', expected one of {BACKENDS}.")


__all__ = ['FiniteElementSpace', 'ScipyKrylovSolver', 'make_linear_solver', 'BACKENDS']
