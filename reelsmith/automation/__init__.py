"""
Automation System

Runs generation requests through the video job lifecycle.
"""

from .orchestrator import JobOrchestrator
from .automation_models import GenerationRequest, JobStage, VideoJob

__all__ = [
    'JobOrchestrator',
    'GenerationRequest',
    'JobStage',
    'VideoJob',
]
