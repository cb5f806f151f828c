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
"""
Residual, Jacobian and preconditioner tests of the backward-Euler system.

The frozen-coefficient Jacobian is exact at the zero state with zero
boundary current, so it is verified there against central finite
differences of the residual.
"""
import pytest
import numpy as np
from scipy.sparse.linalg import LinearOperator

from ResMHD.errors import ConfigurationError
from ResMHD.mhd_operator import ResistiveMHDOperator
from ResMHD.reduced_system import ReducedSystemOperator, PreconditionerFactory
from ResMHD.fem_2d.space import FiniteElementSpace


# =============================================================================
# Helper Functions
# =============================================================================

def make_operator(N=4, viscosity=1e-2, resistivity=2e-2, **kwargs):
    space = FiniteElementSpace(N, N)
    return ResistiveMHDOperator(space, [1, 1, 1, 1], viscosity, resistivity, **kwargs)


def random_state(op, seed=0):
    return np.random.default_rng(seed).normal(size=op.height)


def start_of_step(op, vx, dt):
    phi, psi, w = op.layout.views(vx)
    op.reduced_oper.set_parameters(dt, phi, psi, w)


def interior_rows(op):
    n = op.space.true_vsize
    ess = np.concatenate([op.ess_tdof_list + i * n for i in range(3)])
    return np.setdiff1d(np.arange(op.height), ess)


def compute_fd_jacobian(reduced, k0, eps=1e-4):
    """Jacobian by central finite differences of the residual."""
    n_dof = k0.size
    J_fd = np.zeros((n_dof, n_dof))

    for j in range(n_dof):
        k_plus = k0.copy()
        k_minus = k0.copy()
        k_plus[j] += eps
        k_minus[j] -= eps

        R_plus = reduced.mult(k_plus).copy()
        R_minus = reduced.mult(k_minus).copy()

        J_fd[:, j] = (R_plus - R_minus) / (2 * eps)

    return J_fd


# =============================================================================
# Residual
# =============================================================================

class TestResidual:

    def test_before_set_parameters(self):
        op = make_operator()
        with pytest.raises(ConfigurationError):
            op.reduced_oper.mult(op.layout.zeros())
        with pytest.raises(ConfigurationError):
            op.reduced_oper.get_gradient(op.layout.zeros())

    def test_without_current(self):
        op = make_operator()
        reduced = ReducedSystemOperator(op.space, op.Mmat, op.Kmat, op.DRe, op.DSl,
                                        op.recovery, op.ess_tdof_list)
        vx = op.layout.zeros()
        phi, psi, w = op.layout.views(vx)
        reduced.set_parameters(0.1, phi, psi, w)

        with pytest.raises(ConfigurationError):
            reduced.mult(vx)

    def test_invalid_time_step(self):
        op = make_operator()
        vx = op.layout.zeros()
        with pytest.raises(ConfigurationError):
            start_of_step(op, vx, 0.)

    def test_current_shape(self):
        op = make_operator()
        with pytest.raises(ConfigurationError):
            op.reduced_oper.set_current(np.zeros(3))

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_essential_rows_zero(self, seed):
        op = make_operator()
        op.set_rhs_efield(lambda x, y: 1. + x)
        op.set_j_bdy(0.7)

        vx = random_state(op, seed)
        start_of_step(op, vx, 0.05)

        y = op.reduced_oper.mult(random_state(op, seed + 10))

        for block in op.layout.views(y):
            np.testing.assert_array_equal(block[op.ess_tdof_list], 0.)
        assert np.linalg.norm(y) > 0.

    def test_zero_state_zero_residual(self):
        op = make_operator()
        vx = op.layout.zeros()
        start_of_step(op, vx, 0.1)

        np.testing.assert_array_equal(op.reduced_oper.mult(vx), 0.)

    def test_blocks(self):
        op = make_operator()
        op.set_rhs_efield(lambda x, y: 2. * y)
        reduced = op.reduced_oper

        vx = random_state(op, 3)
        k = random_state(op, 4)
        dt = 0.2
        start_of_step(op, vx, dt)

        y = op.layout.zeros()
        out = reduced.mult(k, y)
        y1, y2, y3 = op.layout.views(y)

        phi, psi, w = op.layout.views(vx)
        phiNew, psiNew, wNew = op.layout.views(k)
        ess = op.ess_tdof_list

        # Current recovered from the iterate with the operator's boundary data
        j_saved = op.j.copy()
        op.recover_current(psiNew)
        J = op.j.copy()
        op.j[:] = j_saved

        e1 = op.Kmat @ phiNew + op.Mmat @ wNew
        e2 = op.Mmat @ (psiNew - psi) / dt + reduced.Nv @ psiNew + op.DSl @ psiNew + op.E0
        e3 = op.Mmat @ (wNew - w) / dt + reduced.Nv @ wNew + op.DRe @ wNew - reduced.Nb @ J
        for e in (e1, e2, e3):
            e[ess] = 0.

        assert out is y
        np.testing.assert_allclose(y1, e1, rtol=1e-8, atol=1e-10)
        np.testing.assert_allclose(y2, e2, rtol=1e-8, atol=1e-10)
        np.testing.assert_allclose(y3, e3, rtol=1e-8, atol=1e-8 * np.abs(e3).max())

    def test_forcing_enters_flux_residual(self):
        op = make_operator()
        op.set_rhs_efield(lambda x, y: 1.)

        vx = op.layout.zeros()
        start_of_step(op, vx, 0.1)
        _, y2, _ = op.layout.views(op.reduced_oper.mult(vx))

        interior = np.setdiff1d(np.arange(op.space.true_vsize), op.ess_tdof_list)
        np.testing.assert_allclose(y2[interior], op.E0[interior])


# =============================================================================
# Jacobian
# =============================================================================

class TestJacobian:

    @pytest.mark.parametrize("N", [2, 3, 4])
    @pytest.mark.parametrize("dt", [1e-2, 1.])
    def test_finite_difference_at_zero_state(self, N, dt):
        op = make_operator(N=N)
        vx = op.layout.zeros()
        start_of_step(op, vx, dt)

        J = op.reduced_oper.get_gradient(vx).toarray()
        J_fd = compute_fd_jacobian(op.reduced_oper, vx)

        rows = interior_rows(op)
        scale = np.abs(J[rows]).max()
        np.testing.assert_allclose(J[rows], J_fd[rows], atol=1e-7 * scale)

    def test_essential_rows_identity(self):
        op = make_operator()
        vx = random_state(op)
        start_of_step(op, vx, 0.1)

        J = op.reduced_oper.get_gradient(vx).toarray()
        ess = np.setdiff1d(np.arange(op.height), interior_rows(op))

        np.testing.assert_array_equal(J[ess], np.eye(op.height)[ess])

    def test_structure(self):
        op = make_operator()
        vx = random_state(op)
        dt = 0.1
        start_of_step(op, vx, dt)

        reduced = op.reduced_oper
        J = reduced.get_gradient(vx).toarray()
        s1, s2, s3 = (op.layout.slice(name) for name in ('phi', 'psi', 'w'))
        interior = np.setdiff1d(np.arange(op.space.true_vsize), op.ess_tdof_list)

        B22 = (op.Mmat / dt + reduced.Nv + op.DSl).toarray()
        B33 = (op.Mmat / dt + reduced.Nv + op.DRe).toarray()

        np.testing.assert_allclose(J[s1, s1][interior], op.Kmat.toarray()[interior])
        np.testing.assert_allclose(J[s1, s3][interior], op.Mmat.toarray()[interior])
        np.testing.assert_allclose(J[s2, s2][interior], B22[interior])
        np.testing.assert_allclose(J[s3, s3][interior], B33[interior])
        np.testing.assert_array_equal(J[s1, s2], 0.)
        np.testing.assert_array_equal(J[s2, s1], 0.)
        np.testing.assert_array_equal(J[s2, s3], 0.)
        np.testing.assert_array_equal(J[s3, s1], 0.)
        np.testing.assert_array_equal(J[s3, s2], 0.)

    def test_rebuilt_per_iterate(self):
        op = make_operator()
        vx = op.layout.zeros()
        start_of_step(op, vx, 0.1)

        J0 = op.reduced_oper.get_gradient(vx)
        J1 = op.reduced_oper.get_gradient(random_state(op))

        assert J0 is not J1
        assert abs(J1 - J0).max() > 0.


# =============================================================================
# Preconditioner factory
# =============================================================================

class TestPreconditionerFactory:

    def test_unknown_kind(self):
        op = make_operator()
        with pytest.raises(ConfigurationError):
            PreconditionerFactory(op.reduced_oper, 'mhd', kind='schur')

    def test_none(self):
        op = make_operator()
        factory = PreconditionerFactory(op.reduced_oper, 'mhd', kind='none')
        assert factory.new_preconditioner(op.Mmat) is None

    @pytest.mark.parametrize("kind", ['block', 'ilu', 'jacobi'])
    def test_fresh_per_call(self, kind):
        op = make_operator()
        vx = random_state(op) * 0.1
        start_of_step(op, vx, 0.1)
        factory = PreconditionerFactory(op.reduced_oper, 'mhd', kind=kind)

        J = op.reduced_oper.get_gradient(vx)
        P0 = factory.new_preconditioner(J)
        P1 = factory.new_preconditioner(J)

        assert isinstance(P0, LinearOperator)
        assert P0 is not P1
        assert factory.nb_built == 2
        assert P0.shape == (op.height, op.height)

    @pytest.mark.parametrize("kind", ['block', 'ilu'])
    def test_approximate_inverse(self, kind):
        op = make_operator()
        vx = random_state(op) * 0.1
        start_of_step(op, vx, 0.1)
        factory = PreconditionerFactory(op.reduced_oper, 'mhd', kind=kind)

        J = op.reduced_oper.get_gradient(vx)
        P = factory.new_preconditioner(J)

        x = random_state(op, 7)
        np.testing.assert_allclose(P.matvec(J @ x), x, atol=1e-2 * np.abs(x).max())
