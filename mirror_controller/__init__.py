"""
Mirror Controller module.

This module contains the mirror pipeline (git and git-subrepo invocations)
and the run controller that executes queued runs independently of the
webhook server. The controller reconciles desired state (queued runs in the
database) with actual state (the run in progress).
"""

from .controller import RunController
from .pipeline import MirrorPipeline, PipelineResult

__all__ = ["MirrorPipeline", "PipelineResult", "RunController"]
