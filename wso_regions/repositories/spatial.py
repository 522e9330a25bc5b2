"""Spatial data query management following platform patterns."""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from ..config_loader import Config
from .pagination import PaginatedAggregator


class SpatialQueryManager:
    """
    Manages the location-bearing reads and region writes in the Supabase database.

    Every multi-row read goes through PaginatedAggregator so that no result set
    is silently truncated at the per-request row cap.

    Responsibilities:
    - Records that still need a region assignment
    - Assigned records with coordinates, for validation
    - Recent events and entities that carry coordinates
    - Participations for a set of events
    - Historical (name, region) pairs
    - Region write-back and metrics upserts

    Example:
        db = SupabaseDatabase(config)
        spatial_manager = SpatialQueryManager(db, config=config)
        meets = spatial_manager.get_records_needing_assignment("meets")
    """

    def __init__(
        self,
        db: Any,
        aggregator: Optional[PaginatedAggregator] = None,
        config: Optional[Config] = None,
    ):
        """Initialize the spatial query manager.

        Args:
            db: SupabaseDatabase (or compatible) instance for executing queries
            aggregator: Paginated reader; built from config if omitted
            config: Optional Config instance. If None, creates new instance.
        """
        self.db = db
        self.config = config or Config()
        self.aggregator = aggregator or PaginatedAggregator.from_config(db, self.config)

    @staticmethod
    def _record_columns(settings: Dict[str, Any]) -> List[str]:
        return list(
            dict.fromkeys(
                [
                    settings["id_column"],
                    settings["name_column"],
                    settings["latitude_column"],
                    settings["longitude_column"],
                    settings["region_column"],
                    *settings["address_fields"],
                ]
            )
        )

    def get_records_needing_assignment(
        self, entity: str, reassign: bool = False
    ) -> List[Dict[str, Any]]:
        """Get entity records to classify.

        Args:
            entity: Configured entity name ('meets', 'clubs')
            reassign: Include records that already have a region

        Returns:
            List of records with id, name, coordinates and address fields
        """
        settings = self.config.get_entity_settings(entity)
        columns = self._record_columns(settings)
        filters = {} if reassign else {settings["region_column"]: {"is": None}}

        try:
            rows = self.aggregator.fetch_all(
                settings["table"], columns, filters, order_by=settings["id_column"]
            )
        except Exception as e:
            logger.error(f"Error getting {entity} needing assignment: {str(e)}")
            raise

        logger.info(f"📊 Found {len(rows)} {entity} records to classify")
        return rows

    def get_assigned_records_with_coordinates(self, entity: str) -> List[Dict[str, Any]]:
        """Get entity records that already have a region and carry coordinates."""
        settings = self.config.get_entity_settings(entity)
        filters = {
            settings["region_column"]: {"not_is": None},
            settings["latitude_column"]: {"not_is": None},
            settings["longitude_column"]: {"not_is": None},
        }
        try:
            rows = self.aggregator.fetch_all(
                settings["table"],
                self._record_columns(settings),
                filters,
                order_by=settings["id_column"],
            )
        except Exception as e:
            logger.error(f"Error getting assigned {entity} with coordinates: {str(e)}")
            raise

        logger.info(f"📊 Found {len(rows)} assigned {entity} records with coordinates")
        return rows

    def update_region(self, entity: str, record_id: Any, region: Optional[str]) -> List[Dict[str, Any]]:
        """Overwrite the region column of one record.

        Args:
            entity: Configured entity name
            record_id: Value of the entity's id column
            region: Region name (None clears the assignment)

        Returns:
            Updated records
        """
        settings = self.config.get_entity_settings(entity)
        try:
            return self.db.update(
                table=settings["table"],
                data={settings["region_column"]: region},
                filters={settings["id_column"]: record_id},
            )
        except Exception as e:
            logger.error(f"Error updating region for {entity} {record_id}: {str(e)}")
            raise

    def get_historical_assignments(self, entity: str) -> List[Dict[str, Any]]:
        """Get (name, region) rows from the entity's historical source.

        Returns an empty list if no history source is configured.
        """
        history = self.config.get_history_settings(entity)
        if not history:
            logger.debug(f"No history source configured for {entity}")
            return []

        name_column = history["name_column"]
        region_column = history["region_column"]
        filters = {name_column: {"not_is": None}, region_column: {"not_is": None}}
        try:
            return self.aggregator.fetch_all(
                history["table"],
                [name_column, region_column],
                filters,
                order_by=history.get("order_column", name_column),
            )
        except Exception as e:
            logger.error(f"Error getting historical assignments for {entity}: {str(e)}")
            raise

    def get_recent_events_with_coordinates(self, since: date) -> List[Dict[str, Any]]:
        """Get events dated on or after ``since`` that have coordinates."""
        table = self.config.get_analytics_setting("events_table")
        id_column = self.config.get_analytics_setting("event_id_column")
        date_column = self.config.get_analytics_setting("event_date_column")
        lat_column = self.config.get_analytics_setting("latitude_column")
        lon_column = self.config.get_analytics_setting("longitude_column")

        filters = {
            date_column: {"gte": since.isoformat()},
            lat_column: {"not_is": None},
            lon_column: {"not_is": None},
        }
        try:
            return self.aggregator.fetch_all(
                table, [id_column, date_column, lat_column, lon_column], filters, order_by=id_column
            )
        except Exception as e:
            logger.error(f"Error getting recent events from {table}: {str(e)}")
            raise

    def get_entities_with_coordinates(self) -> List[Dict[str, Any]]:
        """Get entities (clubs) that have coordinates."""
        table = self.config.get_analytics_setting("entities_table")
        id_column = self.config.get_analytics_setting("entity_id_column")
        lat_column = self.config.get_analytics_setting("latitude_column")
        lon_column = self.config.get_analytics_setting("longitude_column")

        filters = {lat_column: {"not_is": None}, lon_column: {"not_is": None}}
        try:
            return self.aggregator.fetch_all(
                table, [id_column, lat_column, lon_column], filters, order_by=id_column
            )
        except Exception as e:
            logger.error(f"Error getting entities with coordinates from {table}: {str(e)}")
            raise

    def get_participations_for_events(self, event_ids: Sequence[Any]) -> List[Dict[str, Any]]:
        """Get participation rows for the given events, in id batches."""
        table = self.config.get_analytics_setting("participations_table")
        event_column = self.config.get_analytics_setting("event_id_column")
        id_column = self.config.get_analytics_setting("participation_id_column")
        participant_column = self.config.get_analytics_setting("participant_column")

        try:
            return self.aggregator.fetch_in_batches(
                table,
                [id_column, event_column, participant_column],
                key=event_column,
                ids=event_ids,
                order_by=id_column,
            )
        except Exception as e:
            logger.error(f"Error getting participations from {table}: {str(e)}")
            raise

    def upsert_region_metrics(self, record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Write one region's metrics, keyed by region name."""
        table = self.config.get_analytics_setting("metrics_table")
        key_column = self.config.get_analytics_setting("metrics_key_column")
        try:
            return self.db.upsert(table=table, data=record, on_conflict=key_column)
        except Exception as e:
            logger.error(f"Error upserting metrics into {table}: {str(e)}")
            raise
