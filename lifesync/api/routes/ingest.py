"""Ingest routes - push records directly or upload a CSV file."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from lifesync.api.deps import get_ingestion_service, get_owner_id
from lifesync.core.errors import ValidationError
from lifesync.ingestion.csv_source import CSVSource
from lifesync.schemas.api import IngestRequest
from lifesync.schemas.records import LifeDomain, NormalizedRecord, RawRecord
from lifesync.services.ingestion_service import IngestionService, IngestSummary

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post("", response_model=NormalizedRecord, status_code=201)
def ingest_record(
    body: IngestRequest,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Normalize and store a single record.

    Rejected records return 422 with every validation error listed.
    """
    raw = RawRecord(owner_id=owner_id, **body.model_dump(exclude_unset=True))
    return service.ingest(raw)


@router.post("/csv", response_model=IngestSummary)
async def ingest_csv(
    file: UploadFile = File(..., description="CSV with a timestamp column and an optional domain column"),
    domain: Optional[LifeDomain] = Form(None, description="Domain for rows without a domain column"),
    source_id: str = Form("csv-upload"),
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Parse an uploaded CSV and ingest every usable row."""
    try:
        text = (await file.read()).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError("CSV upload must be UTF-8 encoded", [str(exc)]) from exc
    source = CSVSource(text, owner_id=owner_id, source_id=source_id, domain=domain)
    raws = source.parse()
    summary = service.ingest_many(raws)
    summary.received += source.skipped
    summary.rejected += source.skipped
    return summary
