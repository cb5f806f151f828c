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
"""Backward-Euler residual of the resistive MHD system and its preconditioners."""
import numpy as np
import numpy.typing as npt
from scipy.sparse import bmat, csr_matrix, spmatrix
from scipy.sparse.linalg import LinearOperator, spilu

from .blocks import BlockLayout
from .current import CurrentRecovery
from .errors import ConfigurationError
from .fem_2d.forms import assemble_convection, perp_gradient, zero_rows
from .fem_2d.scipy_system import build_preconditioner
from .fem_2d.space import FiniteElementSpace
from .logging import get_logger

NDArray = npt.NDArray[np.floating]
IntArray = npt.NDArray[np.signedinteger]

logger = get_logger(__name__)


class ReducedSystemOperator:
    """Nonlinear system ``F(k) = 0`` of one backward-Euler step.

    The unknown ``k = (phiNew, psiNew, wNew)`` is the state at the end of
    the step. The residual blocks are

        y1 = K phiNew + M wNew
        y2 = M (psiNew - psi) / dt + Nv psiNew + DSl psiNew + E0
        y3 = M (wNew - w) / dt + Nv wNew + DRe wNew - Nb J

    with Nv, Nb and J evaluated at the iterate and all essential rows set
    to zero. ``y1`` is the algebraic constraint linking phi and w.

    Parameters
    ----------
    space : FiniteElementSpace
        Discretization.
    Mmat, Kmat : spmatrix
        Mass and stiffness matrix with essential DOFs eliminated.
    DRe, DSl : spmatrix or None
        Viscous and resistive diffusion. None if the coefficient is zero.
    recovery : CurrentRecovery
        Current recovery sharing the mass solver of the owning operator.
    ess_tdof_list : IntArray
        Essential DOFs.
    """

    def __init__(self,
                 space: FiniteElementSpace,
                 Mmat: spmatrix,
                 Kmat: spmatrix,
                 DRe: spmatrix | None,
                 DSl: spmatrix | None,
                 recovery: CurrentRecovery,
                 ess_tdof_list: IntArray) -> None:

        self.space = space
        self.Mmat = Mmat
        self.Kmat = Kmat
        self.DRe = DRe
        self.DSl = DSl
        self.recovery = recovery
        self.ess_tdof_list = ess_tdof_list

        self.layout = BlockLayout(space.true_vsize)
        self.height = self.layout.size

        self.dt = None
        self.phi = None
        self.psi = None
        self.w = None

        self.j0 = None
        self.E0 = None

        # Rebuilt on every evaluation
        self.Nv = None
        self.Nb = None
        self.J = np.zeros(space.true_vsize)

        self._ess_rows = np.concatenate([ess_tdof_list + self.layout.slice(name).start
                                         for name in ('phi', 'psi', 'w')])

    def set_parameters(self, dt: float, phi: NDArray, psi: NDArray, w: NDArray) -> None:
        """Set step size and start-of-step fields."""
        if not dt > 0.:
            raise ConfigurationError(f"Time step must be positive, got {dt}.")
        self.dt = dt
        self.phi = phi
        self.psi = psi
        self.w = w

    def set_current(self, j0: NDArray) -> None:
        """Current field providing the boundary data of the recovered current."""
        if j0.shape != (self.space.true_vsize,):
            raise ConfigurationError("Current field does not match the discretization.")
        self.j0 = j0

    def set_forcing(self, E0: NDArray | None) -> None:
        self.E0 = E0

    def _check_ready(self) -> None:
        if self.dt is None:
            raise ConfigurationError("Residual evaluated before set_parameters().")
        if self.j0 is None:
            raise ConfigurationError("Residual evaluated without a current field, call set_current() first.")

    def assemble_nv(self, phi: NDArray) -> None:
        self.Nv = assemble_convection(self.space, perp_gradient(self.space, phi))

    def assemble_nb(self, psi: NDArray) -> None:
        self.Nb = assemble_convection(self.space, perp_gradient(self.space, psi))

    def mult(self, k: NDArray, y: NDArray | None = None) -> NDArray:
        """Evaluate the residual at the iterate ``k``.

        Parameters
        ----------
        k : NDArray
            Iterate, length 3n.
        y : NDArray, optional
            Output buffer. Allocated if not given.

        Returns
        -------
        NDArray
            The residual ``y``.
        """
        self._check_ready()

        if y is None:
            y = self.layout.zeros()

        phiNew, psiNew, wNew = self.layout.views(k)
        y1, y2, y3 = self.layout.views(y)
        ess = self.ess_tdof_list

        self.assemble_nv(phiNew)
        self.assemble_nb(psiNew)

        self.recovery(psiNew, self.J, bdr=self.j0)

        y1[:] = self.Kmat @ phiNew + self.Mmat @ wNew
        y1[ess] = 0.

        y2[:] = self.Mmat @ ((psiNew - self.psi) / self.dt) + self.Nv @ psiNew
        if self.DSl is not None:
            y2 += self.DSl @ psiNew
        if self.E0 is not None:
            y2 += self.E0
        y2[ess] = 0.

        y3[:] = self.Mmat @ ((wNew - self.w) / self.dt) + self.Nv @ wNew
        if self.DRe is not None:
            y3 += self.DRe @ wNew
        y3 -= self.Nb @ self.J
        y3[ess] = 0.

        return y

    def get_gradient(self, k: NDArray) -> csr_matrix:
        """Frozen-coefficient Jacobian at the iterate ``k``.

        Nv is rebuilt from the iterate and held fixed, the dependence of Nv,
        Nb and J on the iterate is not differentiated. Essential rows are
        identity rows.
        """
        self._check_ready()

        phiNew, _, _ = self.layout.views(k)
        self.assemble_nv(phiNew)

        Mdt = self.Mmat / self.dt

        B22 = Mdt + self.Nv
        if self.DSl is not None:
            B22 = B22 + self.DSl

        B33 = Mdt + self.Nv
        if self.DRe is not None:
            B33 = B33 + self.DRe

        jac = bmat([[self.Kmat, None, self.Mmat],
                    [None, B22, None],
                    [None, None, B33]], format='csr')

        return zero_rows(jac, self._ess_rows)


class PreconditionerFactory:
    """Builds a preconditioner for every new Jacobian of a reduced system.

    Parameters
    ----------
    op : ReducedSystemOperator
        System producing the Jacobians.
    name : str
        Label used in log messages.
    kind : str, optional
        "block" (block upper triangular with ILU per diagonal block), "ilu",
        "jacobi" or "none". Default: "block".
    """

    KINDS = ('block', 'ilu', 'jacobi', 'none')

    def __init__(self, op: ReducedSystemOperator, name: str = "mhd", kind: str = "block") -> None:
        if kind not in self.KINDS:
            raise ConfigurationError(f"Unknown Newton preconditioner '{kind}', expected one of {self.KINDS}.")
        self.op = op
        self.name = name
        self.kind = kind
        self.nb_built = 0

    def new_preconditioner(self, J: spmatrix) -> LinearOperator | None:
        """Fresh preconditioner for ``J``. Nothing is cached between calls."""
        logger.debug(f"{self.name}: building '{self.kind}' preconditioner")
        self.nb_built += 1

        if self.kind == 'block':
            return self._block_upper_triangular(csr_matrix(J))

        prec, _ = build_preconditioner(J, self.kind)
        return prec

    def _block_upper_triangular(self, J: csr_matrix) -> LinearOperator:
        layout = self.op.layout
        s1, s2, s3 = (layout.slice(name) for name in ('phi', 'psi', 'w'))

        ilu_phi = spilu(J[s1, s1].tocsc())
        ilu_psi = spilu(J[s2, s2].tocsc())
        ilu_w = spilu(J[s3, s3].tocsc())
        M13 = J[s1, s3]

        def matvec(r):
            r = np.ravel(r)
            z = np.empty_like(r)
            z[s3] = ilu_w.solve(r[s3])
            z[s2] = ilu_psi.solve(r[s2])
            z[s1] = ilu_phi.solve(r[s1] - M13 @ z[s3])
            return z

        n = layout.size
        return LinearOperator((n, n), matvec=matvec)
