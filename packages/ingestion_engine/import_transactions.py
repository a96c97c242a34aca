import hashlib
import io
import re
from datetime import datetime
from typing import IO, List, Union

import pandas as pd

from .models import RawRow

_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """
    Normalizes a description for hashing by uppercasing and collapsing whitespace.
    """
    if not description or pd.isna(description):
        return ""
    return _WHITESPACE.sub(" ", str(description)).strip().upper()


def generate_fingerprint(
    timestamp: datetime, description: str, amount: float, currency: str
) -> str:
    """
    Generates a deterministic SHA256 fingerprint for a transaction without a native id.
    Format: SHA256({ISO_Timestamp_Sec}|{Description_Normalized}|{Amount_2dp}|{Currency})

    Only row content enters the hash, never processing time or row position.
    """
    iso_ts = timestamp.replace(microsecond=0, tzinfo=None).isoformat()
    raw_string = (
        f"{iso_ts}|{normalize_description(description)}|{amount:.2f}|"
        f"{str(currency).strip().upper()}"
    )
    return hashlib.sha256(raw_string.encode("utf-8")).hexdigest()


def _records_from_dataframe(df: pd.DataFrame) -> List[RawRow]:
    """
    Converts an export DataFrame into raw rows keyed by the original column labels.
    Empty cells become None.
    """
    df.columns = [str(c).strip() for c in df.columns]
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def parse_csv_content(file_content: IO) -> List[RawRow]:
    """
    Parses a CSV file object into raw rows. All cells are read as text so
    identifiers and amounts are not reinterpreted.
    """
    df = pd.read_csv(file_content, dtype=str, keep_default_na=False, na_values=[""])
    return _records_from_dataframe(df)


def parse_file(file_content: bytes, filename: str) -> List[RawRow]:
    """
    Parses a bank export (CSV, TSV or Excel) based on its extension.
    """
    filename_lower = filename.lower()

    if filename_lower.endswith((".xlsx", ".xls", ".xlsm")):
        df = pd.read_excel(io.BytesIO(file_content), dtype=str)
        return _records_from_dataframe(df)
    if filename_lower.endswith(".tsv"):
        text_stream = io.StringIO(file_content.decode("utf-8-sig"))
        df = pd.read_csv(text_stream, sep="\t", dtype=str, keep_default_na=False, na_values=[""])
        return _records_from_dataframe(df)

    # Default: treat as CSV
    return parse_csv_content(io.StringIO(file_content.decode("utf-8-sig")))


def read_export(path: Union[str, "io.PathLike"]) -> List[RawRow]:
    with open(path, "rb") as fh:
        return parse_file(fh.read(), str(path))
