"""HTTP API for PySched.

This package provides a Flask application that runs simulations on
request.  It is an **optional** extra, install with::

    pip install py-sched[web]

The ``create_app`` factory in ``app.py`` serves two endpoints:

- ``GET /api/policies``: the selectable scheduling policies.
- ``POST /api/simulate``: run a script and return trace and final state.
"""
