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
"""Initial flux, current and equilibrium forcing of the test problems.

    wave         perturbed uniform field, psi = -y + alpha sin(pi y) cos(2 pi x / Lx)
    tearing      Harris sheet with a tearing-mode perturbation
    coalescence  Fadeev island chain with the same perturbation

The current is ``j = laplace(psi)``. The forcing sustaining the unperturbed
state against resistive decay is ``E0 = resistivity * j_background``.
"""
from dataclasses import dataclass
from typing import Callable

import numpy as np

CASES = ('wave', 'tearing', 'coalescence')


@dataclass(frozen=True)
class InitialCondition:
    psi: Callable
    j: Callable
    j_background: Callable

    def efield(self, resistivity: float) -> Callable:
        return lambda x, y: resistivity * self.j_background(x, y)


def _zero(x, y):
    return np.zeros_like(x)


def wave(alpha: float, Lx: float) -> InitialCondition:
    kx = 2. * np.pi / Lx

    def psi(x, y):
        return -y + alpha * np.sin(np.pi * y) * np.cos(kx * x)

    def j(x, y):
        return -(np.pi**2 + kx**2) * alpha * np.sin(np.pi * y) * np.cos(kx * x)

    return InitialCondition(psi, j, _zero)


def _tearing_mode(x, y):
    return np.cos(0.5 * np.pi * y) * np.cos(np.pi * x)


# laplace(_tearing_mode) = -1.25 pi^2 _tearing_mode
_TEARING_EIG = -1.25 * np.pi**2


def tearing(alpha: float, lam: float, yc: float = 0.) -> InitialCondition:

    def j_b(x, y):
        return lam / np.cosh(lam * (y - yc))**2

    def psi(x, y):
        return np.log(np.cosh(lam * (y - yc))) / lam + alpha * _tearing_mode(x, y)

    def j(x, y):
        return j_b(x, y) + _TEARING_EIG * alpha * _tearing_mode(x, y)

    return InitialCondition(psi, j, j_b)


def coalescence(alpha: float, lam: float, eps: float, yc: float = 0.) -> InitialCondition:

    def j_b(x, y):
        return lam * (1. - eps**2) / (np.cosh(lam * (y - yc)) + eps * np.cos(lam * x))**2

    def psi(x, y):
        return (np.log(np.cosh(lam * (y - yc)) + eps * np.cos(lam * x)) / lam
                + alpha * _tearing_mode(x, y))

    def j(x, y):
        return j_b(x, y) + _TEARING_EIG * alpha * _tearing_mode(x, y)

    return InitialCondition(psi, j, j_b)


def get_initial_condition(initial: dict, grid: dict) -> InitialCondition:
    """Select the initial condition from sanitized ``initial`` and ``grid`` sections."""
    case = initial['case']
    yc = grid['y0'] + 0.5 * grid['Ly']

    if case == 'wave':
        return wave(initial['alpha'], grid['Lx'])
    elif case == 'tearing':
        return tearing(initial['alpha'], initial['lambda'], yc)
    elif case == 'coalescence':
        return coalescence(initial['alpha'], initial['lambda'], initial['eps'], yc)
    else:
        raise ValueError(f"Unknown initial condition '{case}', expected one of {CASES}.")
