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
"""SciPy-based Krylov solvers for serial execution without PETSc."""
import numpy as np
import numpy.typing as npt

from scipy.sparse import csr_matrix, spmatrix
from scipy.sparse.linalg import LinearOperator, cg, gmres, spilu

from ..errors import ConfigurationError, LinearSolverError
from ..logging import get_logger

NDArray = npt.NDArray[np.floating]

logger = get_logger(__name__)


def build_preconditioner(mat: spmatrix, kind: str | None):
    """Return a SciPy preconditioner (LinearOperator) for ``mat``.

    Parameters
    ----------
    mat : spmatrix
        System matrix.
    kind : str or None
        "jacobi", "ilu", "amg" or None (no preconditioning).

    Returns
    -------
    tuple
        (LinearOperator or None, AMG hierarchy or None)
    """
    n = mat.shape[0]

    if kind is None or kind == 'none':
        return None, None

    if kind == 'jacobi':
        diag = mat.diagonal()
        if np.any(diag == 0.):
            raise ConfigurationError("Jacobi preconditioner needs a zero-free diagonal.")
        inv_diag = 1. / diag
        return LinearOperator((n, n), matvec=lambda x: inv_diag * x), None

    if kind == 'ilu':
        ilu = spilu(mat.tocsc())
        return LinearOperator((n, n), matvec=ilu.solve), None

    if kind == 'amg':
        import pyamg
        ml = pyamg.ruge_stuben_solver(csr_matrix(mat))
        return ml.aspreconditioner(cycle='V'), ml

    raise ConfigurationError(f"Unknown preconditioner '{kind}'.")


class ScipyKrylovSolver:
    """Persistent Krylov solver context for a fixed sparse matrix.

    The preconditioner is set up once in the constructor (or in
    :meth:`set_operator`) and reused for every :meth:`mult`.

    Parameters
    ----------
    mat : spmatrix
        System matrix (essential DOFs already eliminated).
    method : str, optional
        "cg" or "gmres". Default: "cg".
    preconditioner : str or None, optional
        "jacobi", "ilu", "amg" or None. Default: "jacobi".
    rtol, atol : float, optional
        Relative and absolute tolerance on the residual norm.
    max_iter : int, optional
        Maximum number of iterations.
    iterative_mode : bool, optional
        If True, the output vector of :meth:`mult` is used as initial guess.
    name : str, optional
        Label used in log and error messages.
    """

    def __init__(self,
                 mat: spmatrix,
                 method: str = "cg",
                 preconditioner: str | None = "jacobi",
                 rtol: float = 1e-12,
                 atol: float = 0.,
                 max_iter: int = 2000,
                 iterative_mode: bool = True,
                 name: str = "solver"):

        if method not in ('cg', 'gmres'):
            raise ConfigurationError(f"Unknown Krylov method '{method}'.")

        self.method = method
        self.preconditioner = preconditioner
        self.rtol = rtol
        self.atol = atol
        self.max_iter = max_iter
        self.iterative_mode = iterative_mode
        self.name = name

        self._mat: csr_matrix | None = None
        self._prec = None
        self._amg = None

        # Convergence info
        self._iterations = 0
        self._converged = True
        self._residual_norm = 0.

        self.set_operator(mat)

    def set_operator(self, mat: spmatrix) -> None:
        """Set the system matrix and rebuild the preconditioner."""
        self._mat = csr_matrix(mat)
        self._prec, self._amg = build_preconditioner(self._mat, self.preconditioner)

    @property
    def height(self) -> int:
        return self._mat.shape[0]

    def mult(self, b: NDArray, x: NDArray) -> NDArray:
        """Solve ``A x = b`` in place.

        Parameters
        ----------
        b : NDArray
            Right-hand side.
        x : NDArray
            Solution vector, used as initial guess in iterative mode.

        Returns
        -------
        NDArray
            The solution ``x``.
        """
        if self._mat is None:
            raise RuntimeError("Must call set_operator() before mult()")

        x0 = x.copy() if self.iterative_mode else None

        self._iterations = 0

        def count(_):
            self._iterations += 1

        if self.method == 'cg':
            sol, info = cg(self._mat, b, x0=x0, rtol=self.rtol, atol=self.atol,
                           maxiter=self.max_iter, M=self._prec, callback=count)
        else:
            sol, info = gmres(self._mat, b, x0=x0, rtol=self.rtol, atol=self.atol,
                              maxiter=self.max_iter, M=self._prec,
                              callback=count, callback_type='pr_norm')

        self._converged = (info == 0)
        self._residual_norm = float(np.linalg.norm(b - self._mat @ sol))

        logger.debug(f"{self.name}: {self._iterations} iterations, residual norm {self._residual_norm:.3e}")

        if not self._converged:
            raise LinearSolverError(self.name, self.get_convergence_info())

        x[:] = sol
        return x

    def get_convergence_info(self) -> dict:
        """Get information about the last solve.

        Returns
        -------
        dict
            Dictionary with convergence info:
            - converged: bool
            - iterations: int
            - residual_norm: float
            - reason: int (1 if converged, -1 if not)
        """
        return {
            'converged': self._converged,
            'iterations': self._iterations,
            'residual_norm': self._residual_norm,
            'reason': 1 if self._converged else -1,
        }

    def destroy(self) -> None:
        """Release the matrix, the preconditioner and the AMG hierarchy."""
        self._mat = None
        self._prec = None
        self._amg = None
