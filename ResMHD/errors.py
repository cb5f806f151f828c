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
"""Exceptions raised by the resistive MHD operator and its solvers."""


class LinearSolverError(RuntimeError):
    """A Krylov solve did not reach its tolerance within the iteration cap."""

    def __init__(self, name: str, info: dict):
        self.name = name
        self.info = info
        super().__init__(
            f"{name} did not converge "
            f"(iterations: {info.get('iterations')}, reason: {info.get('reason')})")


class NewtonConvergenceError(RuntimeError):
    """The Newton solve of the backward-Euler system failed."""

    def __init__(self, iterations: int, norm: float):
        self.iterations = iterations
        self.norm = norm
        super().__init__(
            f"Newton solver did not converge after {iterations} iterations "
            f"(residual norm: {norm:.3e})")


class ConfigurationError(RuntimeError):
    """Operator used before its required setup or with inconsistent input."""
