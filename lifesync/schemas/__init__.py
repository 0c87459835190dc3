from lifesync.schemas.connection import (
    Cadence,
    Connection,
    ConnectionCategory,
    ConnectionResult,
    ConnectionStatus,
    SyncCadence,
)
from lifesync.schemas.records import (
    Categorization,
    DataStats,
    DateRange,
    LifeDomain,
    NormalizedRecord,
    ProcessingMetadata,
    RawRecord,
    RecordProvenance,
    RecordQuery,
    SourceDescriptor,
    ValidationResult,
)
from lifesync.schemas.secret import (
    ApiKeyCredentials,
    BasicAuthCredentials,
    CertificateCredentials,
    CredentialKind,
    CredentialPayload,
    OAuthCredentials,
    SecretMetadata,
    SecretSummary,
    StoredSecret,
)
from lifesync.schemas.sync import SyncPolicy, SyncResult, SyncRun, SyncStats

__all__ = [
    "Cadence",
    "Connection",
    "ConnectionCategory",
    "ConnectionResult",
    "ConnectionStatus",
    "SyncCadence",
    "Categorization",
    "DataStats",
    "DateRange",
    "LifeDomain",
    "NormalizedRecord",
    "ProcessingMetadata",
    "RawRecord",
    "RecordProvenance",
    "RecordQuery",
    "SourceDescriptor",
    "ValidationResult",
    "ApiKeyCredentials",
    "BasicAuthCredentials",
    "CertificateCredentials",
    "CredentialKind",
    "CredentialPayload",
    "OAuthCredentials",
    "SecretMetadata",
    "SecretSummary",
    "StoredSecret",
    "SyncPolicy",
    "SyncResult",
    "SyncRun",
    "SyncStats",
]
