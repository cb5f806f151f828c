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
from datetime import datetime
import yaml
import pandas as pd

from .fem_2d import BACKENDS
from .fem_2d.space import NB_BDR_ATTRIBUTES
from .initial import CASES


def print_header(s, n=60, f0='*', f1=' '):

    if len(s) > n:
        n = len(s) + 4

    w = n + len(s) % 2
    b = (w - len(s)) // 2 - 1
    print(w * f0)
    print(f0 + b * f1 + s + b * f1 + f0)
    print(w * f0)


def print_dict(d):
    for k, v in d.items():
        if not isinstance(v, dict):
            print(f'  - {k:<25s}: {v}')
        else:
            print(f'  - {k}:')
            for kk, vv in v.items():
                print(f'    - {kk:<23s}: {vv}')


def create_output_directory(name, use_tstamp=True):

    if use_tstamp:
        timestamp = datetime.now().replace(microsecond=0).strftime("%Y-%m-%d_%H%M%S") + '_'
    else:
        timestamp = ''

    outbase = os.path.dirname(name)
    outname = timestamp + os.path.basename(name)
    outdir = os.path.join(outbase, outname)

    if not os.path.exists(outdir):
        os.makedirs(outdir)
    else:
        if len(os.listdir(outdir)) > 0:
            raise RuntimeError('Output path exists and is not empty.')

    print_header(f"Writing output into: {outdir}", f0=' ', f1=' ')

    return outdir


def write_yaml(output_dict, fname):

    with open(fname, 'w') as FILE:
        yaml.dump(output_dict, FILE)


def history_to_csv(fname, out):
    df = pd.DataFrame(data=out)
    df.to_csv(fname, index=False)


def read_yaml_input(file):

    print_header("PROBLEM SETUP")

    sanitizing_functions = {'options': sanitize_options,
                            'grid': sanitize_grid,
                            'properties': sanitize_properties,
                            'initial': sanitize_initial,
                            'numerics': sanitize_numerics,
                            'solver': sanitize_solver}

    sanitized_dict = {}

    raw_dict = yaml.full_load(file)

    for key, value in raw_dict.items():

        if key in sanitizing_functions.keys():
            print(f'- {key}:')
            sanitized_dict[key] = sanitizing_functions[key](value)

    # Sections with complete defaults may be omitted
    for key in ['options', 'properties', 'initial', 'numerics', 'solver']:
        if key not in sanitized_dict:
            print(f'- {key}:')
            sanitized_dict[key] = sanitizing_functions[key]({})

    if 'grid' not in sanitized_dict:
        raise IOError("Missing mandatory section 'grid'.")

    print_header("PROBLEM SETUP COMPLETED")

    return sanitized_dict


def sanitize_options(d):
    out = {}
    out['output'] = str(d.get('output', 'example'))
    out['write_freq'] = int(d.get('write_freq', 100))
    out['use_tstamp'] = bool(d.get('use_tstamp', True))
    out['silent'] = bool(d.get('silent', False))

    if out['write_freq'] < 1:
        raise IOError("Output frequency must be positive")

    print_dict(out)

    return out


def sanitize_grid(d):

    out = {}

    out['Nx'] = int(d.get('Nx', 16))
    out['Ny'] = int(d.get('Ny', 16))
    if out['Nx'] < 1 or out['Ny'] < 1:
        raise IOError("Need at least one cell in each direction.")

    # x
    if 'Lx' in d.keys():
        out['Lx'] = float(d.get('Lx', 1.))
        out['dx'] = out['Lx'] / out['Nx']
    elif 'dx' in d.keys():
        out['dx'] = float(d.get('dx', 0.1))
        out['Lx'] = out['dx'] * out['Nx']
    else:
        raise IOError("Must specify grid size (Nx) with either dx or Lx.")

    # y
    if 'Ly' in d.keys():
        out['Ly'] = float(d.get('Ly', 1.))
        out['dy'] = out['Ly'] / out['Ny']
    elif 'dy' in d.keys():
        out['dy'] = float(d.get('dy', 0.1))
        out['Ly'] = out['dy'] * out['Ny']
    else:
        raise IOError("Must specify grid size (Ny) with either dy or Ly.")

    out['x0'] = float(d.get('x0', 0.))
    out['y0'] = float(d.get('y0', 0.))

    # Essential BCs (bottom, right, top, left)
    ess_bdr = [int(b) for b in d.get('ess_bdr', [1, 1, 1, 1])]

    if len(ess_bdr) != NB_BDR_ATTRIBUTES:
        raise IOError(f"Need {NB_BDR_ATTRIBUTES} essential boundary markers (bottom, right, top, left).")
    if not all([b in [0, 1] for b in ess_bdr]):
        raise IOError("Essential boundary markers must be 0 or 1.")

    out['ess_bdr'] = ess_bdr

    print_dict(out)

    return out


def sanitize_properties(d):

    out = {}

    out['viscosity'] = float(d.get('viscosity', 1e-3))
    out['resistivity'] = float(d.get('resistivity', 1e-3))

    if out['viscosity'] < 0.:
        raise IOError("Specify a (non-negative) viscosity")
    if out['resistivity'] < 0.:
        raise IOError("Specify a (non-negative) resistivity")

    print_dict(out)

    return out


def sanitize_initial(d):

    out = {}

    out['case'] = str(d.get('case', 'tearing'))
    if out['case'] not in CASES:
        raise IOError(f"Specify a valid initial condition {CASES}")

    out['alpha'] = float(d.get('alpha', 1e-3))
    out['lambda'] = float(d.get('lambda', 5.))
    out['eps'] = float(d.get('eps', 0.2))
    out['forcing'] = bool(d.get('forcing', True))

    if out['lambda'] <= 0.:
        raise IOError("Sheet width parameter (lambda) must be positive")
    if out['case'] == 'coalescence' and not 0. <= out['eps'] < 1.:
        raise IOError("Coalescence parameter (eps) must be in [0, 1)")

    j_bdy = d.get('j_bdy', None)
    out['j_bdy'] = None if j_bdy is None else float(j_bdy)

    print_dict(out)

    return out


def sanitize_numerics(d):

    out = {}

    out['integrator'] = str(d.get('integrator', 'implicit'))
    out['scheme'] = str(d.get('scheme', 'rk2'))
    out['dt'] = float(d.get('dt', 1e-2))
    out['t_end'] = float(d.get('t_end', 1.))
    out['max_it'] = int(d.get('max_it', 100000))

    if out['integrator'] not in ['explicit', 'implicit']:
        raise IOError("Time integrator must be 'explicit' or 'implicit'")
    if out['scheme'] not in ['euler', 'rk2']:
        raise IOError("Explicit scheme must be 'euler' or 'rk2'")
    if out['dt'] <= 0.:
        raise IOError("Time step must be positive")

    print_dict(out)

    return out


def _sanitize_krylov(d, rtol, max_iter):

    out = {}
    out['method'] = str(d.get('method', 'cg'))
    out['preconditioner'] = str(d.get('preconditioner', 'jacobi'))
    out['rtol'] = float(d.get('rtol', rtol))
    out['atol'] = float(d.get('atol', 0.))
    out['max_iter'] = int(d.get('max_iter', max_iter))

    if out['method'] not in ['cg', 'gmres']:
        raise IOError("Krylov method must be 'cg' or 'gmres'")
    if out['preconditioner'] not in ['jacobi', 'ilu', 'amg', 'none']:
        raise IOError("Preconditioner must be one of 'jacobi', 'ilu', 'amg', 'none'")

    return out


def sanitize_solver(d):

    out = {}

    out['backend'] = str(d.get('backend', 'scipy'))
    if out['backend'] not in BACKENDS:
        raise IOError(f"Linear algebra backend must be one of {BACKENDS}")

    out['mass'] = _sanitize_krylov(d.get('mass', {}), rtol=1e-12, max_iter=2000)
    out['stiffness'] = _sanitize_krylov(d.get('stiffness', {}), rtol=1e-7, max_iter=2000)

    out['use_amg'] = bool(d.get('use_amg', False))
    da = d.get('amg', {})
    out['amg'] = {'rtol': float(da.get('rtol', 1e-7)),
                  'max_iter': int(da.get('max_iter', 200))}

    dn = d.get('newton', {})
    newton = {}
    newton['rtol'] = float(dn.get('rtol', 1e-8))
    newton['atol'] = float(dn.get('atol', 1e-12))
    newton['max_iter'] = int(dn.get('max_iter', 20))
    newton['alpha'] = float(dn.get('alpha', 1.))
    newton['linear_rtol'] = float(dn.get('linear_rtol', 1e-8))
    newton['linear_atol'] = float(dn.get('linear_atol', 0.))
    newton['linear_max_iter'] = int(dn.get('linear_max_iter', 500))
    newton['restart'] = int(dn.get('restart', 50))
    newton['print_level'] = int(dn.get('print_level', 0))
    newton['preconditioner'] = str(dn.get('preconditioner', 'block'))

    if newton['preconditioner'] not in ['block', 'ilu', 'jacobi', 'none']:
        raise IOError("Newton preconditioner must be one of 'block', 'ilu', 'jacobi', 'none'")
    if not 0. < newton['alpha'] <= 1.:
        raise IOError("Newton damping (alpha) must be in (0, 1]")

    out['newton'] = newton

    print_dict(out)

    return out
