"""
Loader for the donor roster.

Reads a delimited file into a list of raw row dictionaries. Every cell is
read as a string; typing happens in parser.py. Malformed lines are skipped
rather than failing the whole file.
"""

from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd
import structlog

logger = structlog.get_logger(__name__)


class FetchError(Exception):
    """Error while reading the donor roster."""
    pass


def _read_csv(path: str, delimiter: str, encoding: str) -> pd.DataFrame:
    """
    Read CSV file into DataFrame.

    Tries multiple encodings if the primary one fails.
    """
    encodings_to_try = [encoding, "utf-8-sig", "latin-1", "cp1252"]

    for enc in dict.fromkeys(encodings_to_try):
        try:
            return pd.read_csv(
                path,
                sep=delimiter,
                encoding=enc,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
                on_bad_lines="skip",
            )
        except UnicodeDecodeError:
            continue
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except Exception as e:
            raise FetchError(f"Error reading CSV: {e}") from e

    raise FetchError(
        f"Could not decode CSV with any of: {encodings_to_try}"
    )


def fetch(
    file_path: Union[str, Path],
    delimiter: str = ",",
    encoding: str = "utf-8",
) -> List[Dict[str, Any]]:
    """
    Load the donor roster from a local file.

    Args:
        file_path: Path to the delimited file
        delimiter: Field delimiter
        encoding: Preferred character encoding

    Returns:
        List of dictionaries, one per row, with None for empty cells

    Raises:
        FileNotFoundError: If file does not exist
        FetchError: If file cannot be read
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    logger.info("Loading donor roster", path=str(path))

    df = _read_csv(str(path), delimiter=delimiter, encoding=encoding)

    # Header names are matched exactly, minus surrounding whitespace
    df.columns = [str(column).strip() for column in df.columns]

    # Only empty and missing cells are null; "None", "N/A" and the like stay text
    records = df.astype(object).where(pd.notna(df) & (df != ""), None).to_dict(orient="records")

    logger.info("Loaded donor roster", path=str(path), rows=len(records))
    return records
