"""Board post parsing and cross-post backlink bookkeeping."""

__version__ = "0.1.0"
