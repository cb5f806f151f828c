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
"""Semi-discrete resistive MHD operator in potential/flux/vorticity form.

State vector ``[phi | psi | w]`` (stream function, magnetic flux,
vorticity) on a continuous P1 space. The current ``j`` is an auxiliary
field recovered from ``psi`` and never integrated.
"""
from copy import deepcopy
from typing import Callable, Sequence

import numpy as np
import numpy.typing as npt

from .blocks import BlockLayout
from .current import CurrentRecovery
from .errors import ConfigurationError, NewtonConvergenceError
from .fem_2d import make_linear_solver
from .fem_2d.forms import (assemble_boundary_flux, assemble_convection, assemble_diffusion,
                           assemble_domain_lf, assemble_mass, form_system_matrix, perp_gradient)
from .fem_2d.space import FiniteElementSpace
from .logging import get_logger
from .newton import NewtonSolver
from .reduced_system import PreconditionerFactory, ReducedSystemOperator

NDArray = npt.NDArray[np.floating]

logger = get_logger(__name__)

DEFAULT_SOLVER_SPEC = {
    'backend': 'scipy',
    'mass': {
        'method': 'cg',
        'preconditioner': 'jacobi',
        'rtol': 1e-12,
        'atol': 0.,
        'max_iter': 2000,
    },
    'stiffness': {
        'method': 'cg',
        'preconditioner': 'jacobi',
        'rtol': 1e-7,
        'atol': 0.,
        'max_iter': 2000,
    },
    'use_amg': False,
    'amg': {
        'rtol': 1e-7,
        'max_iter': 200,
    },
    'newton': {
        'rtol': 1e-8,
        'atol': 1e-12,
        'max_iter': 20,
        'alpha': 1.,
        'linear_rtol': 1e-8,
        'linear_atol': 0.,
        'linear_max_iter': 500,
        'restart': 50,
        'print_level': 0,
        'preconditioner': 'block',
    },
}


def merge_solver_spec(solver_spec: dict | None) -> dict:
    """Fill a (possibly partial) solver settings dictionary with defaults."""
    spec = deepcopy(DEFAULT_SOLVER_SPEC)
    for key, value in (solver_spec or {}).items():
        if isinstance(value, dict) and isinstance(spec.get(key), dict):
            spec[key].update(value)
        else:
            spec[key] = value
    return spec


class ResistiveMHDOperator:
    """Explicit right-hand side and implicit step of the resistive MHD equations.

    Linear operators (M, K, KB, DRe, DSl) and the mass and stiffness solver
    contexts are built once. The convection operators Nv and Nb are rebuilt
    from the state on every evaluation.

    Parameters
    ----------
    space : FiniteElementSpace
        Discretization.
    ess_bdr : Sequence[int]
        Essential boundary markers, one per boundary attribute.
    viscosity : float
        Viscous diffusion coefficient.
    resistivity : float
        Resistive diffusion coefficient.
    solver_spec : dict, optional
        Linear and nonlinear solver settings, see ``DEFAULT_SOLVER_SPEC``.
    ess_tdof_list : array_like, optional
        Explicit list of essential DOFs, overrides ``ess_bdr``.
    """

    def __init__(self,
                 space: FiniteElementSpace,
                 ess_bdr: Sequence[int],
                 viscosity: float,
                 resistivity: float,
                 solver_spec: dict | None = None,
                 ess_tdof_list: Sequence[int] | None = None) -> None:

        self.space = space
        self.layout = BlockLayout(space.true_vsize)
        self.viscosity = float(viscosity)
        self.resistivity = float(resistivity)
        self.solver_spec = merge_solver_spec(solver_spec)

        if ess_tdof_list is None:
            self.ess_tdof_list = space.get_essential_true_dofs(ess_bdr)
        else:
            self.ess_tdof_list = np.unique(np.asarray(ess_tdof_list, dtype=int))

        # Linear operator cache
        self.M = assemble_mass(space)
        self.K = assemble_diffusion(space)
        self.KB = (self.K - assemble_boundary_flux(space)).tocsr()
        self.DRe = assemble_diffusion(space, self.viscosity) if self.viscosity != 0. else None
        self.DSl = assemble_diffusion(space, self.resistivity) if self.resistivity != 0. else None

        self.Mmat = form_system_matrix(self.M, self.ess_tdof_list)
        self.Kmat = form_system_matrix(self.K, self.ess_tdof_list)

        self._init_linear_solvers()

        # Nonlinear operators, rebuilt on every evaluation
        self.Nv = None
        self.Nb = None

        self.j = np.zeros(space.true_vsize)
        self.E0 = None

        self.recovery = CurrentRecovery(self.M, self.KB, self.ess_tdof_list, self.M_solver)

        self.reduced_oper = ReducedSystemOperator(space, self.Mmat, self.Kmat,
                                                  self.DRe, self.DSl, self.recovery,
                                                  self.ess_tdof_list)
        self.reduced_oper.set_current(self.j)

        self._init_newton_solver()

    def _init_linear_solvers(self) -> None:
        spec = self.solver_spec
        backend = spec['backend']

        self.M_solver = make_linear_solver(self.Mmat, backend, iterative_mode=True,
                                           name='M_solver', **spec['mass'])
        self.K_solver = make_linear_solver(self.Kmat, backend, iterative_mode=True,
                                           name='K_solver', **spec['stiffness'])

        self.use_amg = bool(spec['use_amg'])
        self.K_amg = None
        if self.use_amg:
            self.K_amg = make_linear_solver(self.Kmat, backend,
                                            method='cg',
                                            preconditioner='amg',
                                            rtol=spec['amg']['rtol'],
                                            max_iter=spec['amg']['max_iter'],
                                            iterative_mode=False,
                                            name='K_amg')

    def _init_newton_solver(self) -> None:
        newton_spec = dict(self.solver_spec['newton'])
        kind = newton_spec.pop('preconditioner')

        self.prec_factory = PreconditionerFactory(self.reduced_oper, 'mhd', kind=kind)

        self.newton_solver = NewtonSolver(**newton_spec)
        self.newton_solver.set_operator(self.reduced_oper)
        self.newton_solver.set_preconditioner_factory(self.prec_factory)

    @property
    def height(self) -> int:
        return self.layout.size

    # ---------------------------
    # Setup
    # ---------------------------

    def set_rhs_efield(self, fun: Callable | None) -> None:
        """Assemble the forcing E0 = (fun, N_i), replacing any previous one.

        ``None`` removes the forcing.
        """
        if fun is None:
            self.E0 = None
        elif not callable(fun):
            raise ConfigurationError("Electric field must be callable as fun(x, y).")
        else:
            self.E0 = assemble_domain_lf(self.space, fun)
        self.reduced_oper.set_forcing(self.E0)

    def set_initial_j(self, fun: Callable) -> None:
        """Initialize the current by nodal projection of ``fun(x, y)``."""
        if not callable(fun):
            raise ConfigurationError("Initial current must be callable as fun(x, y).")
        self.j[:] = self.space.project(fun)

    def set_j_bdy(self, value: float) -> None:
        """Prescribe the current on the essential DOFs."""
        self.j[self.ess_tdof_list] = value

    # ---------------------------
    # Nonlinear operators and auxiliary field
    # ---------------------------

    def assemble_nv(self, phi: NDArray) -> None:
        """Convection by the velocity (dphi/dy, -dphi/dx)."""
        self.Nv = assemble_convection(self.space, perp_gradient(self.space, phi))

    def assemble_nb(self, psi: NDArray) -> None:
        """Convection by the magnetic field (dpsi/dy, -dpsi/dx)."""
        self.Nb = assemble_convection(self.space, perp_gradient(self.space, psi))

    def recover_current(self, psi: NDArray) -> NDArray:
        """Update ``j`` in place from ``psi``, keeping its boundary data."""
        return self.recovery(psi, self.j)

    # ---------------------------
    # Time derivatives
    # ---------------------------

    def mult(self, vx: NDArray, dvx_dt: NDArray | None = None) -> NDArray:
        """Explicit time derivative of the state ``vx``.

        Parameters
        ----------
        vx : NDArray
            State ``[phi | psi | w]``, not modified.
        dvx_dt : NDArray, optional
            Output buffer, allocated if not given.

        Returns
        -------
        NDArray
            Time derivative, the phi block is zero.
        """
        phi, psi, w = self.layout.views(vx)

        if dvx_dt is None:
            dvx_dt = self.layout.zeros()
        else:
            self.layout.check(dvx_dt)
            dvx_dt[:] = 0.
        _, dpsi_dt, dw_dt = self.layout.views(dvx_dt)

        ess = self.ess_tdof_list

        self.assemble_nv(phi)
        self.assemble_nb(psi)
        self.recover_current(psi)

        z = -(self.Nv @ psi)
        if self.resistivity != 0.:
            z -= self.DSl @ psi
        if self.E0 is not None:
            z -= self.E0
        z[ess] = 0.
        self.M_solver.mult(z, dpsi_dt)

        z = -(self.Nv @ w)
        if self.viscosity != 0.:
            z -= self.DRe @ w
        z += self.Nb @ self.j
        z[ess] = 0.
        self.M_solver.mult(z, dw_dt)

        return dvx_dt

    def implicit_solve(self, dt: float, vx: NDArray, k: NDArray | None = None) -> NDArray:
        """Backward-Euler increment ``k`` with ``vx + dt * k`` solving the step.

        The Newton iteration starts from the state ``vx``.

        Raises
        ------
        NewtonConvergenceError
            If the Newton solver does not converge.
        """
        phi, psi, w = self.layout.views(vx)
        self.reduced_oper.set_parameters(dt, phi, psi, w)

        if k is None:
            k = self.layout.zeros()
        else:
            self.layout.check(k)
        k[:] = vx

        self.newton_solver.mult(None, k)

        if not self.newton_solver.get_converged():
            raise NewtonConvergenceError(self.newton_solver.get_num_iterations(),
                                         self.newton_solver.get_final_norm())

        k -= vx
        k /= dt
        return k

    def update_phi(self, vx: NDArray) -> NDArray:
        """Recover phi from w by solving ``K phi = -M w``, in place in ``vx``."""
        phi, _, w = self.layout.views(vx)

        z = -(self.Mmat @ w)
        z[self.ess_tdof_list] = 0.

        if self.use_amg:
            if self.K_amg is None:
                raise ConfigurationError("AMG solver has been destroyed.")
            self.K_amg.mult(z, phi)
        else:
            self.K_solver.mult(z, phi)

        return phi

    # ---------------------------
    # Diagnostics
    # ---------------------------

    def kinetic_energy(self, vx: NDArray) -> float:
        phi, _, _ = self.layout.views(vx)
        return 0.5 * float(phi @ (self.K @ phi))

    def magnetic_energy(self, vx: NDArray) -> float:
        _, psi, _ = self.layout.views(vx)
        return 0.5 * float(psi @ (self.K @ psi))

    # ---------------------------
    # Teardown
    # ---------------------------

    def destroy_amg(self) -> None:
        """Release the AMG hierarchy. Must precede the backend's own teardown."""
        if self.K_amg is not None:
            self.K_amg.destroy()
            self.K_amg = None

    def destroy(self) -> None:
        self.destroy_amg()
        self.M_solver.destroy()
        self.K_solver.destroy()
