"""Pipeline module."""

from sqlcopilot.pipeline.orchestrator import PipelineResult, Text2SQLPipeline

__all__ = ["PipelineResult", "Text2SQLPipeline"]
