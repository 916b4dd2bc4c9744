"""
Interactive Plotly figures for the fold-change audit.

- Reported vs recomputed log2 fold-change scatter, one trace per result
  shape, with ``y = x`` and ``y = -x`` reference lines
- Residual RNA level of each knocked-out gene, colored by cell line

Figures are saved as standalone HTML; static images need kaleido.

Usage:
    from encode_ko_audit.plotting import ReportVisualizer

    viz = ReportVisualizer()
    fig = viz.fold_change_scatter(results)
    viz.save_html(fig, "reports/fold_change_scatter.html")
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd
import plotly.graph_objects as go

logger = logging.getLogger(__name__)

COLORS = {
    # Result shapes
    "deseq": "#1f77b4",      # Blue
    "replicate": "#d62728",  # Red

    # Reference lines
    "identity": "#95a5a6",   # Gray
    "negation": "#2ecc71",   # Green
    "no_change": "#7f8c8d",
}

CELL_LINE_PALETTE = [
    "#1f77b4", "#ff7f0e", "#2ca02c", "#d62728", "#9467bd",
    "#8c564b", "#e377c2", "#7f7f7f", "#bcbd22", "#17becf",
]


class ReportVisualizer:
    """Figure builders for the knockout fold-change report."""

    def __init__(self, template: str = "plotly_white"):
        self.template = template

    def fold_change_scatter(
        self,
        results: pd.DataFrame,
        title: str = "Reported vs recomputed log2 fold-change",
        max_points: int = 50_000,
        height: int = 700,
        width: int = 800,
    ) -> go.Figure:
        """
        Scatter of reported (y) against recomputed (x) log2 fold-changes.

        Args:
            results: Result table with ``recomputed_log2fc`` and ``finite`` columns
            title: Chart title
            max_points: Genes above this count are sampled (deterministically)
            height: Figure height in pixels
            width: Figure width in pixels

        Returns:
            Plotly Figure object
        """
        if results.empty or "finite" not in results.columns:
            return self._empty_figure("No fold-changes to display")

        data = results[results["finite"]]
        if data.empty:
            return self._empty_figure("No finite fold-changes to display")
        if len(data) > max_points:
            logger.info(f"Sampling {max_points:,} of {len(data):,} genes for the scatter")
            data = data.sample(n=max_points, random_state=0)

        fig = go.Figure()
        for fmt, group in data.groupby("source_format", sort=True):
            fig.add_trace(go.Scattergl(
                x=group["recomputed_log2fc"],
                y=group["reported_log2fc"],
                mode="markers",
                name=f"{fmt} ({group['file_accession'].nunique()} files)",
                marker=dict(size=4, opacity=0.4, color=COLORS.get(fmt, "#95a5a6")),
                text=group["file_accession"] + " " + group["gene_id"].astype(str),
                hoverinfo="text+x+y",
            ))

        limit = float(np.nanmax(np.abs(np.concatenate([
            data["recomputed_log2fc"].to_numpy(dtype=float),
            data["reported_log2fc"].to_numpy(dtype=float),
        ]))))
        limit = max(limit, 1.0)
        fig.add_trace(go.Scatter(
            x=[-limit, limit], y=[-limit, limit],
            mode="lines", name="y = x",
            line=dict(color=COLORS["identity"], dash="dash"),
        ))
        fig.add_trace(go.Scatter(
            x=[-limit, limit], y=[limit, -limit],
            mode="lines", name="y = -x",
            line=dict(color=COLORS["negation"], dash="dot"),
        ))

        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            xaxis_title="Recomputed log2(knockout / control)",
            yaxis_title="Reported log2 fold-change",
            template=self.template,
            height=height,
            width=width,
            legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="center", x=0.5),
            hovermode="closest",
        )
        return fig

    def residual_plot(
        self,
        residuals: pd.DataFrame,
        title: str = "Residual RNA level of knocked-out genes",
        corrected: bool = True,
        height: int = 600,
        width: int = 1000,
    ) -> go.Figure:
        """
        Residual RNA level per target gene on a log scale, colored by cell line.

        Args:
            residuals: Output of ``residual_levels``
            title: Chart title
            corrected: Plot the reciprocal-corrected level instead of the raw ratio
            height: Figure height
            width: Figure width

        Returns:
            Plotly Figure object
        """
        column = "corrected_residual_level" if corrected else "residual_level"
        if residuals.empty:
            return self._empty_figure("No residual levels to display")

        data = residuals[np.isfinite(residuals[column].astype(float)) & (residuals[column] > 0)]
        if data.empty:
            return self._empty_figure("No positive residual levels to display")

        order = (
            data.groupby("target")[column].median().sort_values().index.tolist()
        )

        fig = go.Figure()
        cell_lines = sorted(data["cell_line"].fillna("unknown").unique())
        for i, cell_line in enumerate(cell_lines):
            group = data[data["cell_line"].fillna("unknown") == cell_line]
            fig.add_trace(go.Scatter(
                x=group["target"],
                y=group[column],
                mode="markers",
                name=cell_line,
                marker=dict(size=9, color=CELL_LINE_PALETTE[i % len(CELL_LINE_PALETTE)]),
                text=group["file_accession"],
                hovertemplate="%{x}: %{y:.3f}<br>%{text}<extra>" + cell_line + "</extra>",
            ))

        fig.add_hline(y=1.0, line_dash="dash", line_color=COLORS["no_change"], opacity=0.6)
        fig.update_layout(
            title=dict(text=title, x=0.5, font=dict(size=18)),
            xaxis=dict(title="Target gene", categoryorder="array", categoryarray=order),
            yaxis=dict(title="Residual RNA level (knockout / control)", type="log"),
            template=self.template,
            height=height,
            width=width,
            legend=dict(title="Cell line"),
        )
        return fig

    def _empty_figure(self, message: str) -> go.Figure:
        """Create an empty figure with a message."""
        fig = go.Figure()
        fig.add_annotation(
            text=message,
            xref="paper", yref="paper",
            x=0.5, y=0.5,
            showarrow=False,
            font=dict(size=16, color="gray"),
        )
        fig.update_layout(
            template=self.template,
            xaxis=dict(visible=False),
            yaxis=dict(visible=False),
        )
        return fig

    def save_html(self, fig: go.Figure, filepath: Union[str, Path], include_plotlyjs=True) -> Path:
        """Save a figure as a standalone HTML file."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(str(path), include_plotlyjs=include_plotlyjs, full_html=True)
        logger.info(f"Saved: {path}")
        return path

    def save_image(self, fig: go.Figure, filepath: Union[str, Path], fmt: str = "png") -> Path:
        """Export a static image (requires kaleido)."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.write_image(str(path), format=fmt)
        logger.info(f"Saved: {path}")
        return path
