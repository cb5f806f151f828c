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
"""Inexact Newton solver with preconditioned GMRES inner solves."""
from typing import Protocol

import numpy as np
import numpy.typing as npt
from scipy.sparse.linalg import gmres

from .errors import ConfigurationError, LinearSolverError
from .logging import get_logger

NDArray = npt.NDArray[np.floating]

logger = get_logger(__name__)


class NonlinearOperator(Protocol):
    height: int

    def mult(self, k: NDArray, y: NDArray | None = None) -> NDArray:
        ...

    def get_gradient(self, k: NDArray):
        ...


class NewtonSolver:
    """Newton iteration for ``F(x) = b``.

    The operator provides the residual (``mult``) and a linearization
    (``get_gradient``), the optional preconditioner factory builds a fresh
    preconditioner for every linearization point.

    Parameters
    ----------
    rtol, atol : float, optional
        Converged when ``||F(x) - b|| <= max(rtol * ||F(x0) - b||, atol)``.
    max_iter : int, optional
        Maximum number of Newton iterations.
    alpha : float, optional
        Damping factor of the update (the default is 1, full Newton step).
    linear_rtol, linear_atol : float, optional
        GMRES tolerances of the inner solve.
    linear_max_iter : int, optional
        Maximum number of GMRES iterations per Newton step.
    restart : int, optional
        GMRES restart length.
    print_level : int, optional
        0: summary at DEBUG level, >0: every iteration at INFO level.
    """

    def __init__(self,
                 rtol: float = 1e-8,
                 atol: float = 1e-12,
                 max_iter: int = 20,
                 alpha: float = 1.,
                 linear_rtol: float = 1e-8,
                 linear_atol: float = 0.,
                 linear_max_iter: int = 500,
                 restart: int = 50,
                 print_level: int = 0):

        self.rtol = rtol
        self.atol = atol
        self.max_iter = max_iter
        self.alpha = alpha
        self.linear_rtol = linear_rtol
        self.linear_atol = linear_atol
        self.linear_max_iter = linear_max_iter
        self.restart = restart
        self.print_level = print_level

        self.oper: NonlinearOperator | None = None
        self.prec_factory = None

        self._converged = False
        self._iter = 0
        self._norm = np.inf
        self.R_norm_history: list[float] = []

    def set_operator(self, oper: NonlinearOperator) -> None:
        self.oper = oper

    def set_preconditioner_factory(self, factory) -> None:
        self.prec_factory = factory

    def _log(self, msg: str) -> None:
        if self.print_level > 0:
            logger.info(msg)
        else:
            logger.debug(msg)

    def mult(self, b: NDArray | None, x: NDArray) -> NDArray:
        """Solve ``F(x) = b`` in place, starting from ``x``.

        Parameters
        ----------
        b : NDArray or None
            Right-hand side; None is interpreted as zero.
        x : NDArray
            Initial guess, overwritten with the solution.
        """
        if self.oper is None:
            raise ConfigurationError("Newton solver has no operator, call set_operator() first.")

        self._converged = False
        self._iter = 0
        self.R_norm_history = []

        r = np.empty_like(x)
        norm0 = None

        while True:
            self.oper.mult(x, r)
            if b is not None:
                r -= b

            R_norm = float(np.linalg.norm(r))
            self.R_norm_history.append(R_norm)
            if norm0 is None:
                norm0 = R_norm
            self._norm = R_norm

            self._log(f"Newton iteration {self._iter:3d}: residual norm {R_norm:.6e}")

            if R_norm <= max(self.rtol * norm0, self.atol):
                self._converged = True
                break
            if self._iter >= self.max_iter:
                break

            J = self.oper.get_gradient(x)
            P = self.prec_factory.new_preconditioner(J) if self.prec_factory is not None else None

            dx, info = gmres(J, r, rtol=self.linear_rtol, atol=self.linear_atol,
                             restart=self.restart, maxiter=self.linear_max_iter, M=P)
            if info < 0:
                raise LinearSolverError("Newton GMRES", {'iterations': 0, 'reason': info})
            if info > 0:
                # inexact step, the outer iteration decides
                logger.warning(f"Newton GMRES did not reach tolerance in iteration {self._iter}")

            x -= self.alpha * dx
            self._iter += 1

        if self._converged:
            self._log(f"Newton converged in {self._iter} iterations, residual norm {self._norm:.3e}")
        else:
            logger.info(f"Newton did not converge: {self._iter} iterations, residual norm {self._norm:.3e}")

        return x

    def get_converged(self) -> bool:
        return self._converged

    def get_num_iterations(self) -> int:
        return self._iter

    def get_final_norm(self) -> float:
        return self._norm
