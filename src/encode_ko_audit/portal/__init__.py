"""ENCODE portal inputs for the knockout audit.

Reads the cart export (``files.txt``, ``metadata.tsv``), plans and performs
downloads, and parses the two differential-expression result shapes.
"""
