"""
scadkit - an OpenSCAD-style modelling language with a Python scripting API.

Source text or a Shape program is parsed, evaluated against a
manifold3d geometry kernel and returned as a triangle mesh.

    from scadkit.jobs import JobManager

    with JobManager() as jobs:
        response = jobs.submit("difference() { cube(10, center=true); sphere(6); }").result()
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("scadkit")
except PackageNotFoundError:
    __version__ = "0.0.0"
