"""API dependencies"""

from fastapi import Header, Request

from lifesync.services.data_service import DataService
from lifesync.services.ingestion_service import IngestionService


def get_ingestion_service(request: Request) -> IngestionService:
    """The service graph built at startup by the application lifespan."""
    return request.app.state.ingestion_service


def get_data_service(request: Request) -> DataService:
    return DataService(get_ingestion_service(request))


def get_owner_id(x_owner_id: str = Header(..., min_length=1, description="Authenticated owner id")) -> str:
    """Human-user authentication happens upstream; the gateway forwards the owner id."""
    return x_owner_id
