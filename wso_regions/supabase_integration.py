#!/usr/bin/env python3
"""
Supabase Integration Module

This module wraps the official supabase-py client with the small set of
operations the region assignment and analytics code needs: filtered,
range-paginated reads and update/upsert writes.

Key Features:
- Secure credential management with environment variables
- A single filter grammar shared by every query (and by the test fake)
- Range reads that report the exact total row count when asked
- Integration with loguru logging

Filter grammar (``filters`` argument):
    {"state": "CA"}                       equality
    {"meet_id": {"in": [1, 2, 3]}}         membership
    {"Date": {"gte": "2025-01-01"}}        comparison (gt, gte, lt, lte, neq)
    {"wso": {"is": None}}                  IS NULL
    {"latitude": {"not_is": None}}         IS NOT NULL
    {"address": {"ilike": "%California%"}} case-insensitive pattern

Usage:
    from wso_regions.supabase_integration import SupabaseDatabase

    db = SupabaseDatabase()
    rows, total = db.select_range("meets", ["meet_id"], {"wso_geography": {"is": None}}, 0, 999)
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from loguru import logger
from supabase import Client, create_client

from .config_loader import Config

COMPARISON_OPERATORS = ("neq", "gt", "gte", "lt", "lte")

# Look for .env file in project root (parent of the package directory)
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
    logger.debug(f"✅ Loaded environment variables from {env_path}")


def apply_filters(query: Any, filters: Optional[Dict[str, Any]]) -> Any:
    """
    Apply the shared filter grammar to a postgrest query builder.

    Args:
        query: supabase-py query builder
        filters: Filter conditions

    Returns:
        Query builder with filters applied
    """
    if not filters:
        return query

    for key, value in filters.items():
        if not isinstance(value, dict):
            query = query.eq(key, value)
            continue

        for op, operand in value.items():
            if op == "eq":
                query = query.eq(key, operand)
            elif op == "in":
                if not isinstance(operand, (list, tuple)):
                    raise ValueError(f"'in' filter for '{key}' requires a list, got {operand!r}")
                query = query.in_(key, list(operand))
            elif op in COMPARISON_OPERATORS:
                query = getattr(query, op)(key, operand)
            elif op == "is":
                query = query.is_(key, "null" if operand is None else operand)
            elif op == "not_is":
                query = query.not_.is_(key, "null" if operand is None else operand)
            elif op == "ilike":
                query = query.ilike(key, operand)
            else:
                raise ValueError(f"Unsupported filter operator '{op}' for '{key}'")
    return query


def apply_order(query: Any, order_by: Optional[str]) -> Any:
    """Apply an 'column' or 'column desc' ordering."""
    if not order_by:
        return query
    parts = order_by.split()
    descending = len(parts) > 1 and parts[1].lower() == "desc"
    return query.order(parts[0], desc=descending)


class SupabaseDatabase:
    """
    Standard Supabase database operations using the official supabase-py client.
    """

    def __init__(self, config: Optional[Config] = None, client: Optional[Client] = None):
        """Initialize the database client using the service role key.

        Args:
            config: Optional Config instance. If None, creates new instance.
            client: Optional pre-built supabase client (skips credential loading).
        """
        self.config = config or Config()
        self.client: Optional[Client] = client
        if self.client is None:
            self.credentials = self._load_credentials()
            self._create_client()

    def _load_credentials(self) -> Dict[str, str]:
        """Load Supabase credentials from environment variables or config."""
        logger.debug("📋 Loading Supabase credentials...")

        service_url = os.getenv("SUPABASE_URL")
        service_key = os.getenv("SUPABASE_SECRET_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        # Fall back to config file
        if not service_url or not service_key:
            supabase_config = self.config.get("supabase", {}) or {}
            service_url = service_url or supabase_config.get("url")
            service_key = service_key or supabase_config.get("service_key")

        if not service_url or not service_key:
            logger.error("❌ Missing required Supabase credentials:")
            logger.error("   Required: SUPABASE_URL, SUPABASE_SECRET_KEY")
            logger.error("   Or set: SUPABASE_SERVICE_ROLE_KEY, or the 'supabase' config section")
            raise ValueError("Missing required Supabase configuration.")

        logger.debug("   ✅ Loaded Supabase credentials")
        return {"url": service_url, "service_key": service_key}

    def _create_client(self) -> None:
        """Create Supabase client."""
        try:
            logger.debug("🔌 Creating Supabase client...")
            self.client = create_client(self.credentials["url"], self.credentials["service_key"])
            logger.debug("   ✅ Supabase client created")
        except Exception as e:
            logger.error(f"❌ Failed to create Supabase client: {e}")
            raise ValueError(f"Failed to initialize Supabase client: {e}") from e

    def select_range(
        self,
        table: str,
        columns: Optional[List[str]],
        filters: Optional[Dict[str, Any]],
        start: int,
        end: int,
        order_by: Optional[str] = None,
        count: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        """Select one inclusive row range [start, end].

        The backing store caps rows per request; callers page through larger
        results with PaginatedAggregator rather than calling this directly.

        Args:
            table: Table name
            columns: Columns to select
            filters: Filter conditions
            start: First row offset (inclusive)
            end: Last row offset (inclusive)
            order_by: Order by clause; required for stable pagination
            count: Ask the store for the exact total matching row count

        Returns:
            (rows, total) where total is None unless count was requested
        """
        if not self.client:
            raise ValueError("Supabase client not initialized")

        try:
            columns_str = ",".join(columns) if columns else "*"
            query = self.client.table(table).select(columns_str, count="exact" if count else None)
            query = apply_filters(query, filters)
            query = apply_order(query, order_by)
            query = query.range(start, end)

            response = query.execute()
            total = getattr(response, "count", None) if count else None
            return response.data or [], total
        except Exception as e:
            logger.error(f"Database error selecting rows {start}-{end} from {table}: {str(e)}")
            raise

    def update(
        self, table: str, data: Dict[str, Any], filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Update records in a table.

        Args:
            table: Table name
            data: Update data
            filters: Filter conditions

        Returns:
            Updated records
        """
        if not self.client:
            raise ValueError("Supabase client not initialized")

        try:
            query = self.client.table(table).update(data)
            query = apply_filters(query, filters)
            response = query.execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Database error updating {table}: {str(e)}")
            raise

    def upsert(
        self,
        table: str,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
        on_conflict: str,
    ) -> List[Dict[str, Any]]:
        """Insert or overwrite record(s) keyed by a unique column.

        Args:
            table: Table name.
            data: Record data (single dict or list of dicts).
            on_conflict: Unique column used as the upsert key.

        Returns:
            The written record(s), when the store returns them.
        """
        if not self.client:
            raise ValueError("Supabase client not initialized")

        try:
            response = self.client.table(table).upsert(data, on_conflict=on_conflict).execute()
            if hasattr(response, "data") and isinstance(response.data, list):
                return response.data
            logger.warning(f"Upsert into {table} executed but response format unexpected or empty.")
            return []
        except Exception as e:
            logger.error(f"Database error upserting into {table}: {str(e)}")
            raise
