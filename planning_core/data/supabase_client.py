# =============================================================================
# planning_core/data/supabase_client.py
# Supabase Client Configuration for the Planning Optimizer
# Handles database connections and CRUD operations
# =============================================================================

from __future__ import annotations
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
from supabase import Client, create_client

from planning_core.errors import ConfigurationError, DataLoadError, DataWriteError
from planning_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"

# Supabase returns at most this many rows per request
PAGE_SIZE = 1000

# Keep IN (...) filters short enough for the request URL
IN_CHUNK_SIZE = 200


def load_credentials(secrets_path: Optional[Union[str, Path]] = None) -> Tuple[str, str]:
    """
    Load Supabase credentials.

    Reads `[supabase] url/key` from a secrets TOML file, falling back to the
    SUPABASE_URL / SUPABASE_KEY environment variables:

        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-service-key"

    Returns:
        (url, key)

    Raises:
        ConfigurationError: When no credentials can be found
    """
    path = Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH
    url = key = None

    if path.exists():
        try:
            with open(path, "rb") as f:
                secrets = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}", config_key="supabase") from e
        supabase = secrets.get("supabase", {})
        url, key = supabase.get("url"), supabase.get("key")

    url = url or os.environ.get("SUPABASE_URL")
    key = key or os.environ.get("SUPABASE_KEY")

    if not url or not key:
        raise ConfigurationError(
            f"Supabase credentials not found in {path} or SUPABASE_URL/SUPABASE_KEY",
            config_key="supabase",
        )
    return url, key


def get_supabase_client(secrets_path: Optional[Union[str, Path]] = None) -> Client:
    """
    Initialize and return a Supabase client.

    Args:
        secrets_path: Optional secrets TOML path (default: .streamlit/secrets.toml)

    Returns:
        Supabase client instance
    """
    url, key = load_credentials(secrets_path)
    logger.info(f"Connecting to Supabase at {url}")
    return create_client(url, key)


def _chunks(values: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SupabaseService:
    """
    Generic Supabase service for CRUD operations on one table.

    Reads return DataFrames; failures raise DataLoadError / DataWriteError
    so a run never continues on partial data.
    """

    def __init__(self, table_name: str, client: Client):
        """
        Initialize service for a specific table.

        Args:
            table_name: Name of the Supabase table
            client: Supabase client
        """
        self.table_name = table_name
        self.client = client

    def _paginate(self, build_query) -> List[Dict[str, Any]]:
        """Run a query page by page (Supabase 1000-row limit)."""
        all_data: List[Dict[str, Any]] = []
        offset = 0
        while True:
            response = build_query().range(offset, offset + PAGE_SIZE - 1).execute()
            if not response.data:
                break
            all_data.extend(response.data)
            if len(response.data) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return all_data

    def fetch_all(
        self,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Fetch ALL records from the table, optionally filtered by equality.

        Args:
            columns: Select expression
            filters: column -> value equality filters
            order_by: Column to order by (optional)

        Returns:
            DataFrame with all records
        """
        def build_query():
            query = self.client.table(self.table_name).select(columns)
            for col, val in (filters or {}).items():
                query = query.eq(col, val)
            if order_by:
                query = query.order(order_by)
            return query

        try:
            return pd.DataFrame(self._paginate(build_query))
        except Exception as e:
            raise DataLoadError(f"Error fetching data from {self.table_name}: {e}", table=self.table_name) from e

    def fetch_in(
        self,
        column: str,
        values: Iterable[Any],
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
    ) -> pd.DataFrame:
        """
        Fetch records whose column is in a set of values.

        Args:
            column: Column to match
            values: Accepted values
            columns: Select expression
            filters: Additional equality filters

        Returns:
            DataFrame with matching records
        """
        values = sorted({v for v in values if v is not None}, key=str)
        if not values:
            return pd.DataFrame()

        rows: List[Dict[str, Any]] = []
        try:
            for chunk in _chunks(values, IN_CHUNK_SIZE):
                def build_query(chunk=chunk):
                    query = self.client.table(self.table_name).select(columns).in_(column, chunk)
                    for col, val in (filters or {}).items():
                        query = query.eq(col, val)
                    return query
                rows.extend(self._paginate(build_query))
        except Exception as e:
            raise DataLoadError(f"Error fetching data from {self.table_name}: {e}", table=self.table_name) from e
        return pd.DataFrame(rows)

    def fetch_by_date_range(
        self,
        date_column: str,
        start_date: str,
        end_date: str,
        columns: str = "*",
    ) -> pd.DataFrame:
        """
        Fetch ALL records within a date range.

        Args:
            date_column: Name of the date column
            start_date: Start date (ISO format: YYYY-MM-DD)
            end_date: End date (ISO format: YYYY-MM-DD)

        Returns:
            DataFrame with filtered records
        """
        def build_query():
            return (
                self.client.table(self.table_name)
                .select(columns)
                .gte(date_column, start_date)
                .lte(date_column, end_date)
                .order(date_column)
            )

        try:
            return pd.DataFrame(self._paginate(build_query))
        except Exception as e:
            raise DataLoadError(
                f"Error fetching data by date range from {self.table_name}: {e}",
                table=self.table_name,
            ) from e

    def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a single record.

        Returns:
            The inserted row as returned by the database
        """
        rows = self.insert_many([data])
        return rows[0] if rows else {}

    def insert_many(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Insert multiple records (bulk insert).

        Args:
            records: List of dictionaries

        Returns:
            Inserted rows (with generated ids)
        """
        if not records:
            return []
        try:
            response = self.client.table(self.table_name).insert(records).execute()
            return list(response.data or [])
        except Exception as e:
            raise DataWriteError(
                f"Error inserting records into {self.table_name}: {e}",
                table=self.table_name,
                rows=len(records),
            ) from e

    def update(self, filters: Dict[str, Any], data: Dict[str, Any]) -> None:
        """
        Update records matching filters.

        Args:
            filters: Dictionary of equality filter conditions
            data: Dictionary of values to update
        """
        try:
            query = self.client.table(self.table_name).update(data)
            for col, val in filters.items():
                query = query.eq(col, val)
            query.execute()
        except Exception as e:
            raise DataWriteError(f"Error updating {self.table_name}: {e}", table=self.table_name) from e

    def delete_in(
        self,
        column: str,
        values: Iterable[Any],
        filters: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Delete records whose column is in a set of values.

        Args:
            column: Column to match
            values: Values to delete
            filters: Additional equality filters
        """
        values = sorted({v for v in values if v is not None}, key=str)
        if not values:
            return
        try:
            for chunk in _chunks(values, IN_CHUNK_SIZE):
                query = self.client.table(self.table_name).delete().in_(column, chunk)
                for col, val in (filters or {}).items():
                    query = query.eq(col, val)
                query.execute()
        except Exception as e:
            raise DataWriteError(f"Error deleting from {self.table_name}: {e}", table=self.table_name) from e
