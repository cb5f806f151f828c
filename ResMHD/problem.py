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
import os
import io
import signal
import numpy as np
from datetime import datetime

from typing import Type
import numpy.typing as npt
try:
    # Py>=3.11
    from typing import Self
except ImportError:
    # Py<=3.10
    from typing_extensions import Self

from . import __version__
from .fem_2d.space import FiniteElementSpace
from .initial import get_initial_condition
from .io import read_yaml_input, write_yaml, create_output_directory, history_to_csv
from .logging import get_logger
from .mhd_operator import ResistiveMHDOperator


class Problem:
    """
    Problem driver for resistive MHD simulations.

    Sets up the discretization, the semi-discrete operator, the initial
    state, time-stepping parameters, and I/O. The driver owns the state
    vector ``[phi | psi | w]``, the operator only works on views of it.

    Parameters
    ----------
    options : dict
        Output options.
    grid : dict
        Grid size, domain and essential boundary markers.
    prop : dict
        Viscosity and resistivity.
    initial : dict
        Initial condition case and parameters.
    numerics : dict
        Time integration parameters.
    solver : dict
        Linear and nonlinear solver settings.
    """

    def __init__(self,
                 options: dict,
                 grid: dict,
                 prop: dict,
                 initial: dict,
                 numerics: dict,
                 solver: dict) -> None:

        self.options = options
        self.grid = grid
        self.prop = prop
        self.initial = initial
        self.numerics = numerics
        self.solver = solver

        self.space = FiniteElementSpace(grid['Nx'], grid['Ny'],
                                        Lx=grid['Lx'], Ly=grid['Ly'],
                                        x0=grid['x0'], y0=grid['y0'])

        self.operator = ResistiveMHDOperator(self.space,
                                             grid['ess_bdr'],
                                             prop['viscosity'],
                                             prop['resistivity'],
                                             solver_spec=solver)

        # Solution vector
        self.step = None
        self.__vx = self.operator.layout.zeros()
        self._k = self.operator.layout.zeros()
        self._initialize()

        # I/O
        if not self.options['silent']:
            self.outdir = create_output_directory(options['output'], options['use_tstamp'])
            options['output'] = self.outdir

            full_dict = {}
            full_dict.update(version=__version__)

            for k, v in zip(['options', 'grid', 'properties', 'initial', 'numerics', 'solver'],
                            [options, grid, prop, initial, numerics, solver]):
                full_dict[k] = v

            write_yaml(full_dict, os.path.join(self.outdir, 'config.yml'))
            os.makedirs(os.path.join(self.outdir, 'fields'))

            self.logger = get_logger('ResMHD.problem', outdir=self.outdir, force=True)
        else:
            self.outdir = None
            self.logger = get_logger('ResMHD.problem')

    # ---------------------------
    # Constructors
    # ---------------------------

    @staticmethod
    def _get_input(input_dict):

        options = input_dict['options']
        grid = input_dict['grid']
        prop = input_dict['properties']
        initial = input_dict['initial']
        numerics = input_dict['numerics']
        solver = input_dict['solver']

        return options, grid, prop, initial, numerics, solver

    @classmethod
    def from_yaml(cls: Type[Self], fname: str) -> Self:
        """
        Create a Problem instance from a YAML file.

        Parameters
        ----------
        fname : str
            Path to YAML configuration file.

        Returns
        -------
        Problem
            Instantiated `Problem` object.
        """
        print(f"Reading input file: {fname}")
        with open(fname, "r") as ymlfile:
            input_dict = read_yaml_input(ymlfile)

        return cls.from_dict(input_dict)

    @classmethod
    def from_string(cls: Type[Self], ymlstring: str) -> Self:
        """
        Create a Problem instance from a YAML string.

        Parameters
        ----------
        ymlstring : str
            YAML content as a string.

        Returns
        -------
        Problem
            Instantiated `Problem` object.
        """
        with io.StringIO(ymlstring) as ymlfile:
            input_dict = read_yaml_input(ymlfile)

        return cls.from_dict(input_dict)

    @classmethod
    def from_dict(cls: Type[Self], input_dict: dict) -> Self:
        """
        Create a Problem instance from a sanitized input dictionary.

        Parameters
        ----------
        input_dict : dict
            Output of :func:`ResMHD.io.read_yaml_input`.

        Returns
        -------
        Problem
            Instantiated `Problem` object.
        """
        return cls(*cls._get_input(input_dict))

    # ---------------------------
    # Main run loop
    # ---------------------------

    def pre_run(self) -> None:
        """
        Reset step counter, simulation time and history.
        """
        self.step = 0
        self.simtime = 0.
        self.dt = self.numerics['dt']
        self.newton_its = 0

        self.history = {
            "step": [],
            "time": [],
            "dt": [],
            "ekin": [],
            "emag": [],
            "jmax": [],
            "newton_its": [],
        }

    def run(self) -> None:
        """
        Run the time-stepping loop until the final time, maximum iterations,
        or until a termination signal is received.
        """
        if self.step is None:
            self.pre_run()

        self._stop = False
        _handle_signals(self.receive_signal)

        self.print_status_header()
        self.write()

        # Run
        self._tic = datetime.now()
        while not self.finished and not self._stop:
            self.update()
            self.post_update()

            if self.step % self.options['write_freq'] == 0:
                self.write()

        self.post_run()

    def receive_signal(self, signum, frame) -> None:
        """
        Signal handler: set the `_stop` flag on termination signals.
        """
        signals = [signal.SIGINT, signal.SIGTERM, signal.SIGHUP, signal.SIGUSR1]
        if signum in signals:
            self._stop = True

    def post_run(self) -> None:
        """
        Finalize run: write history, final state and timing info.
        """
        walltime = datetime.now() - self._tic

        if self.step % self.options['write_freq'] != 0:
            self.write()

        speed = self.step / max(walltime.total_seconds(), 1e-12)

        self.logger.info(33 * '=')
        self.logger.info(f"Total walltime   :  {str(walltime).split('.')[0]}")
        self.logger.info(f"({speed:.2f} steps/s)")
        self.logger.info(33 * '=')

        if not self.options['silent']:
            history_to_csv(os.path.join(self.outdir, 'history.csv'), self.history)
            self._save_fields(os.path.join(self.outdir, 'state.npz'))

        self.operator.destroy()

    # ---------------------------
    # Convenience properties (field accessors)
    # ---------------------------

    @property
    def vx(self) -> npt.NDArray[np.floating]:
        """Full state vector"""
        return self.__vx

    @property
    def phi(self) -> npt.NDArray[np.floating]:
        return self.operator.layout.views(self.__vx)[0]

    @property
    def psi(self) -> npt.NDArray[np.floating]:
        return self.operator.layout.views(self.__vx)[1]

    @property
    def w(self) -> npt.NDArray[np.floating]:
        return self.operator.layout.views(self.__vx)[2]

    @property
    def j(self) -> npt.NDArray[np.floating]:
        """Current density (auxiliary field)"""
        return self.operator.j

    @property
    def kinetic_energy(self) -> float:
        return self.operator.kinetic_energy(self.__vx)

    @property
    def magnetic_energy(self) -> float:
        return self.operator.magnetic_energy(self.__vx)

    @property
    def finished(self) -> bool:
        t_end = self.numerics['t_end']
        return self.simtime >= t_end - 1e-8 * self.dt or self.step >= self.numerics['max_it']

    # ---------------------------
    # I/O and state writing
    # ---------------------------

    def print_status_header(self) -> None:
        if not self.options['silent']:
            self.logger.info(61 * '-')
            self.logger.info(f"{'Step':6s} {'Timestep':10s} {'Time':10s} {'E_kin':10s} {'E_mag':10s} {'Newton':6s}")
            self.logger.info(61 * '-')

    def print_status(self) -> None:
        if not self.options['silent']:
            self.logger.info(f"{self.step:<6d} {self.dt:.4e} {self.simtime:.4e} "
                             f"{self.kinetic_energy:.4e} {self.magnetic_energy:.4e} {self.newton_its:<6d}")

    def write(self) -> None:
        """
        Print the status line and write a field snapshot.
        """
        self.print_status()

        if not self.options['silent']:
            self._save_fields(os.path.join(self.outdir, 'fields', f'sol_{self.step:06d}.npz'))

    def _save_fields(self, fname: str) -> None:
        np.savez(fname,
                 step=self.step,
                 time=self.simtime,
                 x=self.space.x,
                 y=self.space.y,
                 cells=self.space.cells,
                 phi=self.phi,
                 psi=self.psi,
                 w=self.w,
                 j=self.j)

    # ---------------------------
    # Initialization and update helpers
    # ---------------------------

    def _initialize(self) -> None:
        """Initial flux and current, vanishing flow."""
        ic = get_initial_condition(self.initial, self.grid)

        self.psi[:] = self.space.project(ic.psi)
        self.operator.set_initial_j(ic.j)

        if self.initial['j_bdy'] is not None:
            self.operator.set_j_bdy(self.initial['j_bdy'])

        if self.initial['forcing'] and self.prop['resistivity'] != 0.:
            self.operator.set_rhs_efield(ic.efield(self.prop['resistivity']))

    def update(self) -> None:
        """
        Advance the state by one time step.

        Explicit schemes integrate psi and w and recover phi afterwards.
        The implicit scheme solves for all three fields simultaneously.
        """
        vx = self.__vx
        dt = self.dt

        if self.numerics['integrator'] == 'implicit':
            self.operator.implicit_solve(dt, vx, self._k)
            vx += dt * self._k
            self.newton_its = self.operator.newton_solver.get_num_iterations()

        elif self.numerics['scheme'] == 'euler':
            self.operator.mult(vx, self._k)
            vx += dt * self._k
            self.operator.update_phi(vx)

        else:
            # Midpoint rule
            self.operator.mult(vx, self._k)
            v_half = vx + 0.5 * dt * self._k
            self.operator.update_phi(v_half)
            self.operator.mult(v_half, self._k)
            vx += dt * self._k
            self.operator.update_phi(vx)

    def post_update(self) -> None:
        """
        Recover the current of the new state, advance step counter and time,
        record scalars.
        """
        self.operator.recover_current(self.psi)

        self.step += 1
        self.simtime += self.dt

        self.history["step"].append(self.step)
        self.history["time"].append(self.simtime)
        self.history["dt"].append(self.dt)
        self.history["ekin"].append(self.kinetic_energy)
        self.history["emag"].append(self.magnetic_energy)
        self.history["jmax"].append(float(np.amax(np.abs(self.j))))
        self.history["newton_its"].append(self.newton_its)


# ---------------------------
# Helper functions
# ---------------------------


def _handle_signals(func) -> None:
    """
    Register a function as the handler for common termination signals.
    """
    for s in [
        signal.SIGHUP,
        signal.SIGINT,
        signal.SIGTERM,
        signal.SIGUSR1,
        signal.SIGUSR2,
    ]:
        signal.signal(s, func)
