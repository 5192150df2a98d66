"""
sslib — shared library for the ElastiCache cross-account migration toolkit.

Modules here have zero dependency on utils.py; they log through
``logging.getLogger(__name__)`` and leave console/file setup to the entry points.
"""
