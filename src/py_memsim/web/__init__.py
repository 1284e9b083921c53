"""JSON web API for py-memsim.

This package exposes the memory engine over HTTP with Flask.  It is an
**optional** extra — install with::

    pip install py-memsim[web]

The ``create_app`` factory in ``app.py`` wraps one engine (and a shell
over it) and serves the snapshot, initialize, templates, processes,
compact and execute endpoints.
"""

from py_memsim.web.app import create_app

__all__ = ["create_app"]
