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
import pytest
import numpy as np
from scipy.sparse.linalg import spsolve

from ResMHD.errors import ConfigurationError
from ResMHD.mhd_operator import ResistiveMHDOperator
from ResMHD.fem_2d.space import FiniteElementSpace
from ResMHD.fem_2d.forms import assemble_convection, perp_gradient, eliminate_rhs


# =============================================================================
# Helper Functions
# =============================================================================

def make_operator(N=6, viscosity=0., resistivity=0., ess_bdr=(1, 1, 1, 1), **kwargs):
    space = FiniteElementSpace(N, N)
    return ResistiveMHDOperator(space, list(ess_bdr), viscosity, resistivity, **kwargs)


def smooth_state(op):
    """Flux and vorticity vanishing on the boundary, consistent phi."""
    vx = op.layout.zeros()
    _, psi, w = op.layout.views(vx)
    x, y = op.space.x, op.space.y

    psi[:] = 0.1 * np.sin(np.pi * x) * np.sin(np.pi * y) + 0.05 * np.sin(2 * np.pi * x) * np.sin(np.pi * y)
    w[:] = 0.2 * np.sin(2 * np.pi * x) * np.sin(np.pi * y)
    op.update_phi(vx)

    return vx


def reference_current(op, psi, j_bdr):
    B = eliminate_rhs(op.M, op.ess_tdof_list, j_bdr, -(op.KB @ psi))
    return spsolve(op.Mmat.tocsc(), B)


def mass_solve(op, z):
    z = z.copy()
    z[op.ess_tdof_list] = 0.
    return spsolve(op.Mmat.tocsc(), z)


class Exploding:
    """Stands in for an operator that must not be applied."""

    def __matmul__(self, other):
        raise AssertionError("operator applied")

    def __rmatmul__(self, other):
        raise AssertionError("operator applied")


def assert_close(actual, desired, rel=1e-8):
    atol = rel * max(np.abs(desired).max(), 1e-300)
    np.testing.assert_allclose(actual, desired, rtol=rel, atol=atol)


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:

    def test_linear_operator_cache(self):
        op = make_operator(viscosity=1e-2, resistivity=2e-2)

        assert op.height == 3 * op.space.true_vsize
        assert op.Nv is None
        assert op.Nb is None
        assert op.E0 is None
        np.testing.assert_allclose(op.DRe.toarray(), 1e-2 * op.K.toarray())
        np.testing.assert_allclose(op.DSl.toarray(), 2e-2 * op.K.toarray())

    def test_zero_coefficients_not_assembled(self):
        op = make_operator()

        assert op.DRe is None
        assert op.DSl is None
        assert op.reduced_oper.DRe is None
        assert op.reduced_oper.DSl is None

    def test_ess_tdof_override(self):
        op = make_operator(ess_tdof_list=[0])
        np.testing.assert_array_equal(op.ess_tdof_list, [0])

    def test_partial_solver_spec(self):
        op = make_operator(solver_spec={'mass': {'rtol': 1e-10}})

        assert op.solver_spec['mass']['rtol'] == 1e-10
        assert op.solver_spec['mass']['max_iter'] == 2000
        assert op.solver_spec['stiffness']['rtol'] == 1e-7
        assert op.M_solver.rtol == 1e-10
        assert op.M_solver.iterative_mode
        assert op.K_solver.iterative_mode
        assert op.K_amg is None

    def test_amg_solver_settings(self):
        op = make_operator(solver_spec={'use_amg': True})

        assert op.K_amg.preconditioner == 'amg'
        assert op.K_amg.max_iter == 200
        assert op.K_amg.rtol == 1e-7
        assert not op.K_amg.iterative_mode

    def test_unknown_newton_preconditioner(self):
        with pytest.raises(ConfigurationError):
            make_operator(solver_spec={'newton': {'preconditioner': 'schur'}})


# =============================================================================
# Explicit evaluator
# =============================================================================

class TestExplicitEvaluator:

    def test_zero_state_single_essential_dof(self):
        op = make_operator(ess_tdof_list=[0])

        dvx = op.mult(op.layout.zeros())

        assert dvx.shape == (op.height,)
        np.testing.assert_array_equal(dvx, 0.)

    def test_pure_advection(self):
        op = make_operator()
        op.DRe = Exploding()
        op.DSl = Exploding()

        vx = smooth_state(op)
        phi, psi, w = op.layout.views(vx)

        dvx = op.mult(vx)
        dphi, dpsi, dw = op.layout.views(dvx)

        Nv = assemble_convection(op.space, perp_gradient(op.space, phi))
        Nb = assemble_convection(op.space, perp_gradient(op.space, psi))
        j = reference_current(op, psi, np.zeros_like(psi))

        assert_close(op.j, j)
        assert_close(dpsi, mass_solve(op, -(Nv @ psi)))
        assert_close(dw, mass_solve(op, -(Nv @ w) + Nb @ j))
        np.testing.assert_array_equal(dphi, 0.)

    def test_diffusion_and_forcing(self):
        op = make_operator(viscosity=1e-2, resistivity=3e-2)
        op.set_rhs_efield(lambda x, y: 0.5 + x * y)

        vx = smooth_state(op)
        _, psi, w = op.layout.views(vx)

        dvx = op.mult(vx)
        _, dpsi, dw = op.layout.views(dvx)

        assert_close(dpsi, mass_solve(op, -(op.Nv @ psi) - op.DSl @ psi - op.E0))
        assert_close(dw, mass_solve(op, -(op.Nv @ w) - op.DRe @ w + op.Nb @ op.j))

    def test_resistivity_zero_skips_resistive_diffusion(self):
        op = make_operator(viscosity=1e-2, resistivity=0.)
        op.DSl = Exploding()

        vx = smooth_state(op)
        op.mult(vx)
        op.implicit_solve(1e-3, vx)

        assert op.reduced_oper.DSl is None

    def test_viscosity_zero_skips_viscous_diffusion(self):
        op = make_operator(viscosity=0., resistivity=1e-2)
        op.DRe = Exploding()

        vx = smooth_state(op)
        op.mult(vx)
        op.implicit_solve(1e-3, vx)

        assert op.reduced_oper.DRe is None

    def test_input_not_mutated(self):
        op = make_operator(viscosity=1e-2, resistivity=1e-2)
        vx = smooth_state(op)
        vx0 = vx.copy()

        op.mult(vx)

        np.testing.assert_array_equal(vx, vx0)

    def test_output_buffer_overwritten(self):
        op = make_operator(viscosity=1e-2, resistivity=1e-2)
        vx = smooth_state(op)

        dvx = np.full(op.height, 7.)
        out = op.mult(vx, dvx)
        phi_dot, psi_dot, w_dot = op.layout.views(dvx)

        assert out is dvx
        np.testing.assert_array_equal(phi_dot, 0.)
        np.testing.assert_array_equal(psi_dot[op.ess_tdof_list], 0.)
        np.testing.assert_array_equal(w_dot[op.ess_tdof_list], 0.)

    def test_convection_operators_follow_state(self):
        op = make_operator()
        vx = smooth_state(op)

        op.mult(vx)
        Nv0, Nb0 = op.Nv, op.Nb

        op.mult(2. * vx)

        assert op.Nv is not Nv0
        assert op.Nb is not Nb0
        np.testing.assert_allclose(op.Nv.toarray(), 2. * Nv0.toarray(), atol=1e-12)
        np.testing.assert_allclose(op.Nb.toarray(), 2. * Nb0.toarray(), atol=1e-12)

    def test_wrong_state_length(self):
        op = make_operator()
        with pytest.raises(ConfigurationError):
            op.mult(np.zeros(op.height - 1))


# =============================================================================
# Current recovery
# =============================================================================

class TestCurrentRecovery:

    def test_idempotent(self):
        op = make_operator(resistivity=1e-2)
        op.set_j_bdy(0.3)
        _, psi, _ = op.layout.views(smooth_state(op))

        j0 = op.j.copy()
        op.recover_current(psi)
        j1 = op.j.copy()

        op.j[:] = j0
        op.recover_current(psi)
        np.testing.assert_array_equal(op.j, j1)

        # Warm started from the previous result
        op.recover_current(psi)
        np.testing.assert_allclose(op.j, j1, rtol=1e-9, atol=1e-12)

    def test_boundary_data_kept(self):
        op = make_operator()
        op.set_j_bdy(2.5)
        _, psi, _ = op.layout.views(smooth_state(op))

        j_bdr = op.j.copy()
        op.recover_current(psi)

        np.testing.assert_array_equal(op.j[op.ess_tdof_list], 2.5)
        assert_close(op.j, reference_current(op, psi, j_bdr))

    def test_linear_flux_carries_no_current(self):
        op = make_operator()
        psi = op.space.project(lambda x, y: x + 2. * y)

        op.recover_current(psi)

        np.testing.assert_allclose(op.j, 0., atol=1e-10)

    def test_set_initial_j(self):
        op = make_operator()
        j = op.j

        op.set_initial_j(lambda x, y: x - y)

        assert op.j is j
        np.testing.assert_allclose(op.j, op.space.x - op.space.y)

        with pytest.raises(ConfigurationError):
            op.set_initial_j(1.)


# =============================================================================
# Forcing, potential recovery, diagnostics, teardown
# =============================================================================

class TestForcing:

    def test_assembly_and_replacement(self):
        op = make_operator()
        ones = np.ones(op.space.true_vsize)

        op.set_rhs_efield(lambda x, y: 2.)
        np.testing.assert_allclose(op.E0, 2. * (op.M @ ones))
        assert op.reduced_oper.E0 is op.E0

        op.set_rhs_efield(lambda x, y: 3.)
        np.testing.assert_allclose(op.E0, 3. * (op.M @ ones))
        assert op.reduced_oper.E0 is op.E0

        op.set_rhs_efield(None)
        assert op.E0 is None
        assert op.reduced_oper.E0 is None

    def test_not_callable(self):
        op = make_operator()
        with pytest.raises(ConfigurationError):
            op.set_rhs_efield(1.)

    def test_forcing_drives_flux(self):
        op = make_operator(ess_tdof_list=[0])
        op.set_rhs_efield(lambda x, y: 1.)

        dvx = op.mult(op.layout.zeros())
        _, dpsi, dw = op.layout.views(dvx)

        assert_close(dpsi, mass_solve(op, -op.E0))
        np.testing.assert_array_equal(dw, 0.)


class TestUpdatePhi:

    def test_solves_constraint(self):
        op = make_operator()
        vx = smooth_state(op)
        phi, _, w = op.layout.views(vx)

        r = op.Kmat @ phi + op.Mmat @ w
        r[op.ess_tdof_list] = 0.

        assert np.linalg.norm(r) <= 1e-6 * np.linalg.norm(op.Mmat @ w)
        np.testing.assert_array_equal(phi[op.ess_tdof_list], 0.)

    def test_amg_path(self):
        op = make_operator()
        op_amg = make_operator(solver_spec={'use_amg': True})

        vx = smooth_state(op)
        vx_amg = smooth_state(op_amg)

        assert_close(vx_amg, vx, rel=1e-4)

    def test_destroy_amg(self):
        op = make_operator(solver_spec={'use_amg': True})
        op.destroy_amg()

        assert op.K_amg is None
        with pytest.raises(ConfigurationError):
            op.update_phi(op.layout.zeros())

        # Idempotent
        op.destroy_amg()

    def test_destroy(self):
        op = make_operator(solver_spec={'use_amg': True})
        op.destroy()

        assert op.K_amg is None
        with pytest.raises(RuntimeError):
            op.mult(op.layout.zeros())


def test_energies():
    op = make_operator()
    vx = op.layout.zeros()
    _, psi, _ = op.layout.views(vx)
    psi[:] = op.space.x

    assert op.kinetic_energy(vx) == 0.
    assert np.isclose(op.magnetic_energy(vx), 0.5)
