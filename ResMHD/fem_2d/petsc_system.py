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
import numpy as np
import numpy.typing as npt

from scipy.sparse import csr_matrix, spmatrix

from .. import HAS_PETSC
from ..errors import ConfigurationError, LinearSolverError
from ..logging import get_logger

if not HAS_PETSC:
    raise ImportError(
        "petsc4py is required for the PETSc backend but is not installed.\n"
        "Install ResMHD with the 'petsc' extra or use backend: scipy."
    )

from petsc4py import PETSc

NDArray = npt.NDArray[np.floating]

logger = get_logger(__name__)

_PC_TYPES = {
    'jacobi': 'jacobi',
    'ilu': 'ilu',
    'amg': 'gamg',
    'none': 'none',
    None: 'none',
}


class PETScKrylovSolver:
    """Persistent PETSc KSP context for a fixed sparse matrix.

    Same interface as :class:`~ResMHD.fem_2d.scipy_system.ScipyKrylovSolver`.
    The operator is serial per process (``PETSc.COMM_SELF``).

    1. PETSc AIJ matrix created from the CSR structure
    2. KSP/PC configured once, options can be overridden from the command line
    3. Explicit :meth:`destroy` before ``PETSc`` finalization

    Parameters
    ----------
    mat : spmatrix
        System matrix (essential DOFs already eliminated).
    method : str, optional
        "cg" or "gmres". Default: "cg".
    preconditioner : str or None, optional
        "jacobi", "ilu", "amg" (GAMG) or None. Default: "jacobi".
    rtol, atol : float, optional
        Relative and absolute tolerance.
    max_iter : int, optional
        Maximum number of iterations.
    iterative_mode : bool, optional
        If True, the output vector of :meth:`mult` is used as initial guess.
    name : str, optional
        Label used in log and error messages, also the KSP options prefix.
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
        if preconditioner not in _PC_TYPES:
            raise ConfigurationError(f"Unknown preconditioner '{preconditioner}'.")

        self.method = method
        self.preconditioner = preconditioner
        self.rtol = rtol
        self.atol = atol
        self.max_iter = max_iter
        self.iterative_mode = iterative_mode
        self.name = name
        self.comm = PETSc.COMM_SELF

        self.mat = None
        self.ksp = None
        self.set_operator(mat)

    def set_operator(self, mat: spmatrix) -> None:
        """Create the PETSc matrix, vectors and KSP for ``mat``."""
        self.destroy()

        A = csr_matrix(mat)
        A.sort_indices()
        n = A.shape[0]

        self.mat = PETSc.Mat().createAIJ(size=(n, n),
                                         csr=(A.indptr.astype(PETSc.IntType),
                                              A.indices.astype(PETSc.IntType),
                                              A.data),
                                         comm=self.comm)
        self.mat.assemblyBegin(PETSc.Mat.AssemblyType.FINAL)
        self.mat.assemblyEnd(PETSc.Mat.AssemblyType.FINAL)

        self.vec_rhs = self.mat.createVecLeft()
        self.vec_sol = self.mat.createVecRight()

        self.ksp = PETSc.KSP().create(self.comm)
        self.ksp.setOptionsPrefix(f"{self.name}_")
        self.ksp.setOperators(self.mat)
        self.ksp.setType(self.method)
        self.ksp.setTolerances(rtol=self.rtol, atol=self.atol, max_it=self.max_iter)
        self.ksp.setInitialGuessNonzero(self.iterative_mode)

        pc = self.ksp.getPC()
        pc.setType(_PC_TYPES[self.preconditioner])

        self.ksp.setFromOptions()
        self.ksp.setUp()

    @property
    def height(self) -> int:
        return self.mat.getSize()[0]

    def mult(self, b: NDArray, x: NDArray) -> NDArray:
        """Solve ``A x = b`` in place, ``x`` is the initial guess in iterative mode."""
        if self.ksp is None:
            raise RuntimeError("Must call set_operator() before mult()")

        self.vec_rhs.setArray(b)
        if self.iterative_mode:
            self.vec_sol.setArray(x)
        else:
            self.vec_sol.zeroEntries()

        self.ksp.solve(self.vec_rhs, self.vec_sol)

        info = self.get_convergence_info()
        logger.debug(f"{self.name}: {info['iterations']} iterations, residual norm {info['residual_norm']:.3e}")

        if not info['converged']:
            raise LinearSolverError(self.name, info)

        x[:] = self.vec_sol.getArray()
        return x

    def get_convergence_info(self) -> dict:
        """
        Get information about the last solve.

        Returns
        -------
        dict
            Dictionary with convergence info:
            - converged: bool
            - iterations: int
            - residual_norm: float
            - reason: int (PETSc convergence reason code)
        """
        reason = self.ksp.getConvergedReason()
        return {
            'converged': reason > 0,
            'iterations': self.ksp.getIterationNumber(),
            'residual_norm': self.ksp.getResidualNorm(),
            'reason': reason,
        }

    def destroy(self) -> None:
        """Release KSP, PC (including GAMG hierarchies), matrix and vectors."""
        if self.ksp is not None:
            self.ksp.destroy()
            self.vec_rhs.destroy()
            self.vec_sol.destroy()
            self.mat.destroy()
        self.ksp = None
        self.mat = None
