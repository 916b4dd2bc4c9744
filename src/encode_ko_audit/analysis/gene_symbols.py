"""Ensembl gene ID to gene symbol lookup.

Uses a local gene-annotation table when one is given, otherwise the HGNC
complete gene set, downloaded on first use and cached as a TSV under
``~/.encode_ko_audit/`` (refreshed after 30 days).
"""

import logging
import os
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

HGNC_URL = "https://storage.googleapis.com/public-download-files/hgnc/tsv/tsv/hgnc_complete_set.txt"

DEFAULT_CACHE_DIR = Path.home() / ".encode_ko_audit"
DEFAULT_CACHE_FILE = DEFAULT_CACHE_DIR / "hgnc_ensembl_symbol_map.tsv"

# Cache expiry: 30 days in seconds
CACHE_MAX_AGE_SECONDS = 30 * 24 * 60 * 60

ID_COLUMNS = ["gene_id", "ensembl_gene_id", "Gene stable ID"]
SYMBOL_COLUMNS = ["gene_name", "symbol", "Gene name"]

_ENSEMBL_VERSION = re.compile(r"^(ENS[A-Z]*G\d+)\.\d+(_PAR_Y)?$")


def strip_version(gene_id):
    """Drop the version suffix from an Ensembl gene ID (``ENSG...12`` -> ``ENSG...``)."""
    if not isinstance(gene_id, str):
        return gene_id
    match = _ENSEMBL_VERSION.match(gene_id.strip())
    if match:
        return match.group(1) + (match.group(2) or "")
    return gene_id.strip()


def _pick_column(columns, candidates: List[str]) -> Optional[str]:
    for name in candidates:
        if name in columns:
            return name
    return None


def read_annotation_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read a gene-annotation table mapping Ensembl IDs to symbols.

    Args:
        path: TSV (or CSV, by suffix) with an Ensembl ID column and a symbol column

    Returns:
        DataFrame with ``gene_id`` (unversioned) and ``symbol``
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Annotation table not found: {table_path}")

    sep = "," if table_path.suffix.lower() == ".csv" else "\t"
    df = pd.read_csv(table_path, sep=sep, dtype=str)

    id_col = _pick_column(df.columns, ID_COLUMNS)
    symbol_col = _pick_column(df.columns, SYMBOL_COLUMNS)
    if id_col is None or symbol_col is None:
        raise ValueError(
            f"Annotation table {table_path} needs one of {ID_COLUMNS} "
            f"and one of {SYMBOL_COLUMNS}; found {list(df.columns)}"
        )

    table = df[[id_col, symbol_col]].rename(columns={id_col: "gene_id", symbol_col: "symbol"})
    table = table.dropna()
    table["gene_id"] = table["gene_id"].map(strip_version)
    table["symbol"] = table["symbol"].str.strip()
    return table.drop_duplicates().reset_index(drop=True)


class GeneSymbolLookup:
    """Maps Ensembl gene IDs to gene symbols and back.

    Args:
        annotation_file: Local annotation table. When omitted the HGNC
            complete set is used.
        cache_path: HGNC cache file. Defaults to
            ``~/.encode_ko_audit/hgnc_ensembl_symbol_map.tsv``, overridable
            via the ``HGNC_CACHE_PATH`` environment variable.
    """

    def __init__(
        self,
        annotation_file: Optional[Union[str, Path]] = None,
        cache_path: Optional[Union[str, Path]] = None,
    ) -> None:
        self.annotation_file = Path(annotation_file) if annotation_file else None
        if cache_path is not None:
            self._cache_path = Path(cache_path)
        else:
            env_path = os.environ.get("HGNC_CACHE_PATH")
            self._cache_path = Path(env_path) if env_path else DEFAULT_CACHE_FILE

        self._table: Optional[pd.DataFrame] = None
        self._to_symbol: Optional[Dict[str, str]] = None
        self._to_ids: Optional[Dict[str, List[str]]] = None

    @classmethod
    def from_table(cls, table: pd.DataFrame) -> "GeneSymbolLookup":
        """Build a lookup from an in-memory ``gene_id``/``symbol`` table."""
        lookup = cls()
        lookup._table = table[["gene_id", "symbol"]].copy()
        return lookup

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    @property
    def table(self) -> pd.DataFrame:
        if self._table is None:
            if self.annotation_file is not None:
                logger.info(f"Loading gene annotation table: {self.annotation_file}")
                self._table = read_annotation_table(self.annotation_file)
            else:
                self._table = self._load_hgnc()
        return self._table

    def ensembl_to_symbol(self) -> Dict[str, str]:
        if self._to_symbol is None:
            table = self.table.drop_duplicates(subset="gene_id")
            self._to_symbol = dict(zip(table["gene_id"], table["symbol"]))
        return self._to_symbol

    def symbol_to_ensembl(self) -> Dict[str, List[str]]:
        """Upper-cased symbol -> all Ensembl IDs carrying it."""
        if self._to_ids is None:
            mapping: Dict[str, List[str]] = {}
            for gene_id, symbol in zip(self.table["gene_id"], self.table["symbol"]):
                ids = mapping.setdefault(symbol.upper(), [])
                if gene_id not in ids:
                    ids.append(gene_id)
            self._to_ids = mapping
        return self._to_ids

    def ids_for_symbol(self, symbol: str) -> List[str]:
        return list(self.symbol_to_ensembl().get(symbol.strip().upper(), []))

    def add_symbols(
        self,
        df: pd.DataFrame,
        id_col: str = "gene_id",
        symbol_col: str = "symbol",
    ) -> pd.DataFrame:
        """
        Add gene symbols to a DataFrame with Ensembl IDs.

        Args:
            df: DataFrame with (possibly versioned) Ensembl gene IDs
            id_col: Column name containing Ensembl IDs
            symbol_col: Column name for symbols (will be added)

        Returns:
            Copy of ``df`` with the symbol column added
        """
        mapping = self.ensembl_to_symbol()
        df = df.copy()
        df[symbol_col] = df[id_col].map(strip_version).map(mapping)
        return df

    # -----------------------------------------------------------------
    # HGNC cache
    # -----------------------------------------------------------------

    def _cache_is_valid(self) -> bool:
        if not self._cache_path.exists():
            return False
        age = time.time() - self._cache_path.stat().st_mtime
        return age < CACHE_MAX_AGE_SECONDS

    def _read_cache(self) -> pd.DataFrame:
        return pd.read_csv(self._cache_path, sep="\t", dtype=str)

    def _download_hgnc(self) -> pd.DataFrame:
        df = pd.read_csv(
            HGNC_URL,
            sep="\t",
            usecols=["symbol", "ensembl_gene_id"],
            dtype=str,
        )
        df = df.dropna(subset=["ensembl_gene_id", "symbol"])
        return df.rename(columns={"ensembl_gene_id": "gene_id"})[["gene_id", "symbol"]]

    def _load_hgnc(self) -> pd.DataFrame:
        if self._cache_is_valid():
            logger.info(f"Loading HGNC gene map from cache: {self._cache_path}")
            return self._read_cache()

        logger.info("Downloading HGNC complete gene set...")
        try:
            df = self._download_hgnc()
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(self._cache_path, sep="\t", index=False)
            logger.info(f"Cached {len(df)} Ensembl -> symbol mappings to {self._cache_path}")
            return df
        except (OSError, ValueError) as exc:
            if self._cache_path.exists():
                logger.warning(f"Failed to download HGNC data ({exc}), using stale cache")
                return self._read_cache()
            logger.warning(
                f"Failed to download HGNC data: {exc}. Gene symbols will not be resolved."
            )
            return pd.DataFrame(columns=["gene_id", "symbol"])
