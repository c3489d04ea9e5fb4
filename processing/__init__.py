"""
Feed Processing

Batch orchestration of shop feeds through the normalizers.
"""

from .pipeline import (
    ProcessingPipeline,
    ProcessingResult,
    ProcessingJob,
    RejectRecord,
)

__all__ = ['ProcessingPipeline', 'ProcessingResult', 'ProcessingJob', 'RejectRecord']
