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
import logging

from ResMHD.logging import get_logger


def test_stdout_only():
    logger = get_logger('ResMHD.test_stdout', force=True)

    assert logger.level == logging.INFO
    assert not logger.propagate
    assert [type(h) for h in logger.handlers] == [logging.StreamHandler]


def test_reuse_and_force(tmp_path):
    logger = get_logger('ResMHD.test_reuse', force=True)
    assert get_logger('ResMHD.test_reuse', outdir=str(tmp_path)) is logger
    assert len(logger.handlers) == 1

    logger = get_logger('ResMHD.test_reuse', outdir=str(tmp_path), force=True)
    assert len(logger.handlers) == 2

    logger.info("step 1")
    for h in logger.handlers:
        h.flush()

    logfile = os.path.join(tmp_path, 'resmhd_test_reuse.log')
    with open(logfile, 'r') as f:
        assert 'INFO - step 1' in f.read()

    get_logger('ResMHD.test_reuse', force=True)
    assert len(logger.handlers) == 1
