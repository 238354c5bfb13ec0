"""Personal Finance Tracker package.

Budget period accounting, recurring transactions and savings goals behind
a FastAPI server.  See ``api.py`` for the HTTP entry point and
``scheduler.py`` for the recurring-series runner.
"""
