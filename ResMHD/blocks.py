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
"""Block layout of the MHD state vector ``[phi | psi | w]``.

``phi`` obeys an algebraic constraint (no time derivative), ``psi`` and
``w`` are differential fields. Views returned here alias the parent
buffer and must not outlive it.
"""
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError

NDArray = npt.NDArray[np.floating]

FIELDS = ('phi', 'psi', 'w')
ALGEBRAIC_FIELDS = ('phi',)
DIFFERENTIAL_FIELDS = ('psi', 'w')


@dataclass(frozen=True)
class BlockLayout:
    """Three contiguous blocks of equal size ``n``."""
    n: int

    @property
    def size(self) -> int:
        return len(FIELDS) * self.n

    def slice(self, name: str) -> slice:
        i = FIELDS.index(name)
        return slice(i * self.n, (i + 1) * self.n)

    def is_algebraic(self, name: str) -> bool:
        return name in ALGEBRAIC_FIELDS

    def check(self, vec: NDArray) -> None:
        if vec.ndim != 1 or vec.shape[0] != self.size:
            raise ConfigurationError(
                f"State vector must have length 3 x {self.n} = {self.size}, got shape {vec.shape}.")

    def views(self, vec: NDArray) -> tuple[NDArray, NDArray, NDArray]:
        """Non-owning views (phi, psi, w) into ``vec``."""
        self.check(vec)
        return tuple(vec[self.slice(name)] for name in FIELDS)

    def zeros(self) -> NDArray:
        return np.zeros(self.size)
