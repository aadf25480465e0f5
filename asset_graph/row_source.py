"""
Row sources for the ownership table.

Every source returns one pandas DataFrame with the warehouse's own column
names; the loader maps them to canonical fields. Reads are retried with
exponential backoff on transient failures only, and a source that is still
failing after the retry budget fails the build. No fallback to cached or
partial data.
"""

import logging
import zipfile
from pathlib import Path
from typing import Optional

import pandas as pd
import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import (
    API_MAX_PAGES,
    API_PAGE_SIZE,
    MOTHERDUCK_DATABASE,
    MOTHERDUCK_TOKEN,
    OWNERSHIP_TABLE,
    REQUEST_HEADERS,
    REQUEST_TIMEOUT,
    ROW_SOURCE_BACKOFF_MAX,
    ROW_SOURCE_BACKOFF_MIN,
    ROW_SOURCE_MAX_ATTEMPTS,
)
from .errors import RowSourceError, RowSourceUnavailable

logger = logging.getLogger(__name__)


class RowSource:
    """Read-only interface to the analytics warehouse."""

    name = "rows"

    def read(self) -> pd.DataFrame:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"


class FileRowSource(RowSource):
    """Local extract of the ownership table (.parquet, .csv or .xlsx)."""

    def __init__(self, path: Path, sheet_name: Optional[str] = None):
        self.path = Path(path)
        self.sheet_name = sheet_name
        self.name = str(self.path)

    def read(self) -> pd.DataFrame:
        if not self.path.exists():
            raise RowSourceError(f"Ownership extract not found: {self.path}")

        suffix = self.path.suffix.lower()
        try:
            if suffix == ".parquet":
                return pd.read_parquet(self.path)
            if suffix == ".csv":
                # Keep ids as text; numeric coercion happens in the loader
                return pd.read_csv(self.path, dtype=str, keep_default_na=True)
            if suffix in (".xlsx", ".xls"):
                return pd.read_excel(self.path, sheet_name=self.sheet_name or 0, dtype=str)
        except OSError as e:
            raise RowSourceUnavailable(f"Could not read {self.path}: {e}") from e
        except (ValueError, zipfile.BadZipFile) as e:
            # pandas ParserError / EmptyDataError and pyarrow ArrowInvalid are ValueErrors
            raise RowSourceError(f"Could not parse {self.path}: {e}") from e
        raise RowSourceError(f"Unsupported extract format: {self.path.suffix}")


class MotherDuckRowSource(RowSource):
    """Ownership table hosted on MotherDuck, read through duckdb."""

    def __init__(self, table: str = OWNERSHIP_TABLE,
                 database: str = MOTHERDUCK_DATABASE,
                 token: Optional[str] = MOTHERDUCK_TOKEN):
        self.table = table
        self.database = database
        self.token = token
        self.name = f"md:{database}.{table}"

    def read(self) -> pd.DataFrame:
        import duckdb

        if not self.token:
            raise RowSourceError("MOTHERDUCK_TOKEN not set (checked MOTHERDUCK_TOKEN, PUBLIC_MOTHERDUCK_TOKEN)")

        con = None
        try:
            con = duckdb.connect(":memory:")
            con.execute("INSTALL motherduck")
            con.execute("LOAD motherduck")
            con.execute(f"SET motherduck_token='{self.token}'")
            con.execute(f"ATTACH 'md:{self.database}' AS gem")
            logger.info(f"Querying {self.name}")
            return con.execute(f"SELECT * FROM gem.{self.table}").df()
        except (duckdb.IOException, duckdb.ConnectionException) as e:
            raise RowSourceUnavailable(f"MotherDuck unavailable: {e}") from e
        except duckdb.Error as e:
            raise RowSourceError(f"MotherDuck query failed: {e}") from e
        finally:
            if con is not None:
                con.close()


class OwnershipApiRowSource(RowSource):
    """Paginated ownership rows from the Ownership API (GET /assets)."""

    def __init__(self, base_url: str, page_size: int = API_PAGE_SIZE,
                 max_pages: int = API_MAX_PAGES,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.max_pages = max_pages
        self.session = session or requests.Session()
        self.name = self.base_url

    def _get_page(self, offset: int) -> list:
        url = f"{self.base_url}/assets"
        try:
            resp = self.session.get(
                url,
                params={"limit": self.page_size, "offset": offset},
                headers=REQUEST_HEADERS,
                timeout=REQUEST_TIMEOUT,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RowSourceUnavailable(f"Ownership API unreachable: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise RowSourceUnavailable(f"Ownership API returned {resp.status_code} for {url}")
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise RowSourceError(f"Ownership API rejected request: {e}") from e
        try:
            payload = resp.json()
        except ValueError as e:
            raise RowSourceError(f"Ownership API returned invalid JSON for {url}: {e}") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("results", []), list):
            raise RowSourceError(f"Ownership API returned an unexpected payload for {url}")
        return payload.get("results", [])

    def read(self) -> pd.DataFrame:
        rows = []
        offset = 0
        for page in range(self.max_pages):
            results = self._get_page(offset)
            rows.extend(results)
            offset += self.page_size
            if len(results) < self.page_size:
                break
            if (page + 1) % 50 == 0:
                logger.info(f"  Fetched {len(rows)} rows so far...")
        else:
            # Never publish a truncated table as a complete read
            raise RowSourceError(
                f"Ownership API still returning full pages after {self.max_pages} pages "
                f"({len(rows)} rows); raise API_MAX_PAGES"
            )
        return pd.DataFrame(rows)


def fetch_rows(source: RowSource,
               max_attempts: int = ROW_SOURCE_MAX_ATTEMPTS,
               backoff_min: float = ROW_SOURCE_BACKOFF_MIN,
               backoff_max: float = ROW_SOURCE_BACKOFF_MAX) -> pd.DataFrame:
    """Read all rows from ``source``, retrying transient failures.

    Raises:
        RowSourceError: the source failed permanently or every attempt
            hit a transient failure.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_min or 1, min=backoff_min, max=backoff_max),
        retry=retry_if_exception_type(RowSourceUnavailable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        frame = retrying(source.read)
    except RowSourceUnavailable as e:
        raise RowSourceError(
            f"{source!r} still failing after {max_attempts} attempts: {e}"
        ) from e

    logger.info(f"Read {len(frame)} rows from {source!r}")
    return frame
