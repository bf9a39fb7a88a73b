"""
Field-file marshaling for the external solver case directory.

A case directory holds one folder per output time (``0``, ``0.5``, ...) with
one ASCII ``volScalarField`` file per state variable, plus
``system/controlDict`` with the run times. Only the internal field is read or
replaced; the header and boundary definitions of existing files are kept.
"""
import os
import re

import numpy as np

FIELD_TEMPLATE = """FoamFile
{{
    version     2.0;
    format      ascii;
    class       volScalarField;
    location    "{location}";
    object      {name};
}}

dimensions      {dimensions};

{internal}

boundaryField
{{
}}
"""

_INTERNAL_RE = re.compile(
    r"internalField\s+"
    r"(?:uniform\s+(?P<uniform>[^;\s]+)\s*;"
    r"|nonuniform\s+List<scalar>\s*(?P<count>\d+)\s*\((?P<values>[^)]*)\)\s*;)",
    re.DOTALL,
)


def format_time(t):
    """Time-folder name of a simulation time, e.g. 0, 0.5, 12."""
    return f"{float(t):.12g}"


def time_dir(case_dir, t):
    return os.path.join(case_dir, format_time(t))


def format_internal_field(values):
    """internalField entry with 17 significant digits (exact float round trip)."""
    values = np.asarray(values, dtype=float)
    body = "\n".join(f"{v:.17g}" for v in values)
    return f"internalField   nonuniform List<scalar>\n{len(values)}\n(\n{body}\n)\n;"


def parse_internal_field(text, n_cells=None):
    """
    Parse the internalField entry of a field file.

    Parameters
    ----------
    text : str
        File contents
    n_cells : int, optional
        Length of a uniform field; required to expand ``uniform`` entries

    Returns
    -------
    ndarray [N]

    Raises
    ------
    ValueError
        If the entry is missing or malformed
    """
    match = _INTERNAL_RE.search(text)
    if match is None:
        raise ValueError("no internalField entry found")

    if match.group('uniform') is not None:
        if n_cells is None:
            raise ValueError("uniform internalField needs the number of cells")
        return np.full(n_cells, float(match.group('uniform')))

    values = np.array([float(v) for v in match.group('values').split()])
    if len(values) != int(match.group('count')):
        raise ValueError(
            f"internalField declares {match.group('count')} values but holds {len(values)}")
    return values


def write_field(case_dir, t, name, values, dimensions="[0 0 0 1 0 0 0]"):
    """
    Write a variable into ``<case_dir>/<t>/<name>``.

    If the file exists its internalField is replaced in place, otherwise a new
    file with an empty boundaryField is written.

    Returns
    -------
    str
        Path of the written file
    """
    folder = time_dir(case_dir, t)
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, name)
    internal = format_internal_field(values)

    if os.path.exists(path):
        with open(path, 'r') as f:
            text = f.read()
        if _INTERNAL_RE.search(text) is None:
            raise ValueError(f"{path} has no internalField entry to replace")
        text = _INTERNAL_RE.sub(lambda _: internal, text, count=1)
    else:
        text = FIELD_TEMPLATE.format(location=format_time(t), name=name,
                                     dimensions=dimensions, internal=internal)

    with open(path, 'w') as f:
        f.write(text)
    return path


def read_field(case_dir, t, name, n_cells=None):
    """Read the internal field of ``<case_dir>/<t>/<name>``."""
    path = os.path.join(time_dir(case_dir, t), name)
    with open(path, 'r') as f:
        return parse_internal_field(f.read(), n_cells)


def update_control_dict(case_dir, **entries):
    """
    Set ``key value;`` entries of ``system/controlDict``.

    Existing keys are replaced; missing keys are appended. The file is created
    if it does not exist.
    """
    path = os.path.join(case_dir, 'system', 'controlDict')
    os.makedirs(os.path.dirname(path), exist_ok=True)
    text = ''
    if os.path.exists(path):
        with open(path, 'r') as f:
            text = f.read()

    for key, value in entries.items():
        line = f"{key:<15} {value};"
        pattern = re.compile(rf"^[ \t]*{re.escape(key)}\s+[^;]*;", re.MULTILINE)
        if pattern.search(text):
            text = pattern.sub(lambda _: line, text, count=1)
        else:
            text = text + ('' if text.endswith('\n') or not text else '\n') + line + '\n'

    with open(path, 'w') as f:
        f.write(text)
    return path


def read_control_dict(case_dir):
    """Parse ``key value;`` entries of ``system/controlDict`` into a dict of strings."""
    path = os.path.join(case_dir, 'system', 'controlDict')
    with open(path, 'r') as f:
        text = f.read()
    return dict(re.findall(r"^[ \t]*(\w+)\s+([^;{}\s][^;]*);", text, re.MULTILINE))
