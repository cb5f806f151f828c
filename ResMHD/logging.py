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
"""Loggers of the ResMHD modules: plain messages on stdout, timestamped log file."""
import logging
import os
import sys


def get_logger(name: str, outdir: str | None = None, force: bool = False) -> logging.Logger:
    """Logger ``name`` printing bare messages to stdout.

    With ``outdir``, records are also written to ``<outdir>/<name>.log``
    (dots replaced by underscores, lower case). Handlers are set up once per
    logger, ``force`` discards them and sets them up again, e.g. when the
    output directory of a run is known.
    """
    logger = logging.getLogger(name)

    if logger.handlers and not force:
        return logger

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    logger.setLevel(logging.INFO)
    logger.propagate = False

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(sh)

    if outdir is not None:
        os.makedirs(outdir, exist_ok=True)
        logfile = name.replace('.', '_').lower() + '.log'
        fh = logging.FileHandler(os.path.join(outdir, logfile))
        fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logger.addHandler(fh)

    return logger
