"""Transformation Pipeline - raw record in, normalized record out.

validate -> transform -> categorize -> tag -> score. No I/O happens here;
the caller decides where the resulting record goes.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

from pydantic import BaseModel

from lifesync.core.clock import Clock, utcnow
from lifesync.core.config import settings
from lifesync.core.errors import ValidationError
from lifesync.core.logging import get_logger
from lifesync.pipeline.categorization import DEFAULT_CATEGORY_RULES, CategoryRule, categorize
from lifesync.pipeline.tagging import generate_tags
from lifesync.pipeline.transforms import Transform, apply_transforms, default_transforms
from lifesync.pipeline.validation import RecordValidator
from lifesync.schemas.records import (
    Categorization,
    LifeDomain,
    NormalizedRecord,
    ProcessingMetadata,
    RawRecord,
    SourceDescriptor,
    ValidationResult,
)

log = get_logger("pipeline")

SOURCE_RELIABILITY = 0.8


class PipelineResult(BaseModel):
    success: bool
    record: Optional[NormalizedRecord] = None
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None

    def raise_for_error(self) -> NormalizedRecord:
        if not self.success or self.record is None:
            errors = self.validation.errors if self.validation else []
            raise ValidationError(self.error or "Record processing failed", errors)
        return self.record


def confidence_score(validation: ValidationResult, categorization: Categorization) -> float:
    score = 0.5
    if validation.is_valid:
        score += 0.3
    score += categorization.confidence * 0.2
    score -= 0.1 * len(validation.warnings)
    return max(0.0, min(1.0, score))


class TransformationPipeline:
    def __init__(
        self,
        clock: Clock = utcnow,
        base_currency: str = settings.BASE_CURRENCY,
        version: str = settings.PIPELINE_VERSION,
        validator: Optional[RecordValidator] = None,
        transforms: Optional[Dict[LifeDomain, Tuple[Transform, ...]]] = None,
        category_rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES,
    ):
        self.clock = clock
        self.version = version
        self.validator = validator or RecordValidator()
        self.transforms = default_transforms(base_currency) if transforms is None else transforms
        self.category_rules = category_rules

    def validate(self, raw: RawRecord) -> ValidationResult:
        return self.validator.validate(raw, self.clock())

    def process(self, raw: RawRecord) -> PipelineResult:
        now = self.clock()
        validation = self.validator.validate(raw, now)
        if not validation.is_valid:
            error = f"Data validation failed: {', '.join(validation.errors)}"
            log.warning(f"Rejected record source={raw.source_id} owner={raw.owner_id}: {error}")
            return PipelineResult(success=False, error=error, validation=validation)

        payload, applied = apply_transforms(raw.payload, self.transforms.get(raw.domain, ()))
        categorization = categorize(payload, self.category_rules)
        tags = generate_tags(payload, categorization, applied, now)

        provider = raw.metadata.provider if raw.metadata and raw.metadata.provider else None
        source_kind = raw.metadata.source_kind if raw.metadata and raw.metadata.source_kind else "api"

        record = NormalizedRecord(
            owner_id=raw.owner_id,
            domain=raw.domain,
            timestamp=raw.timestamp,
            payload=payload,
            source=SourceDescriptor(
                id=raw.source_id,
                name=provider or "Unknown Source",
                kind=source_kind,
                reliability=SOURCE_RELIABILITY,
            ),
            confidence=confidence_score(validation, categorization),
            tags=tags,
            processing_metadata=ProcessingMetadata(
                processed_at=now,
                pipeline_version=self.version,
                validation_score=1.0,
                transformations_applied=applied,
                categorization=categorization,
            ),
            created_at=now,
        )
        log.debug(f"Normalized record id={record.id} domain={record.domain.value} tags={len(record.tags)}")
        return PipelineResult(success=True, record=record, validation=validation)
