"""Deterministic assessment statistics and quality gating."""

from .builder import build_assessment_metrics
from .quality import assess_data_quality, downgrade_to_metrics_only

__all__ = ["assess_data_quality", "build_assessment_metrics", "downgrade_to_metrics_only"]
