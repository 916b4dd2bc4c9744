"""Audit of reported fold-changes in ENCODE CRISPR-knockout RNA-seq results.

Selects knockout differential-expression files from an ENCODE cart export,
recomputes each file's fold-changes from its group means, and plots the
reported values against the recomputed ones together with the residual
RNA level of every knocked-out gene.
"""

__version__ = "0.1.0"
