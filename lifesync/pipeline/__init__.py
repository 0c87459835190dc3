from lifesync.pipeline.pipeline import PipelineResult, TransformationPipeline, confidence_score

__all__ = ["PipelineResult", "TransformationPipeline", "confidence_score"]
