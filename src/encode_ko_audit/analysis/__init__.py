"""Fold-change recomputation, orientation diagnosis and gene symbol lookup.

Usage::

    from encode_ko_audit.analysis import add_recomputed, summarize_orientation

    results = add_recomputed(results, pseudocount=0.0)
    summary = summarize_orientation(results, tolerance=0.01)
"""

from encode_ko_audit.analysis.fold_change import (
    add_recomputed,
    classify_relation,
    recompute_log2fc,
    residual_levels,
    summarize_orientation,
)
from encode_ko_audit.analysis.gene_symbols import (
    GeneSymbolLookup,
    read_annotation_table,
    strip_version,
)

__all__ = [
    "GeneSymbolLookup",
    "add_recomputed",
    "classify_relation",
    "read_annotation_table",
    "recompute_log2fc",
    "residual_levels",
    "strip_version",
    "summarize_orientation",
]
