from lifesync.ingestion.base import BaseSource, parse_timestamp
from lifesync.ingestion.csv_source import CSVSource
from lifesync.ingestion.http_source import ProviderApiSource
from lifesync.ingestion.runner import IngestionRunner, SourceBatch

__all__ = ["BaseSource", "CSVSource", "IngestionRunner", "ProviderApiSource", "SourceBatch", "parse_timestamp"]
