"""Application services."""

from .artifact_generation import ArtifactGenerationService, ArtifactStage
from .console import Console
from .decoder_workflow import DecoderWorkflowService
from .model_insertion import InsertionForm, InsertionSession, ModelInsertionService
from .sessions import SessionStore

__all__ = [
    "ArtifactGenerationService",
    "ArtifactStage",
    "Console",
    "DecoderWorkflowService",
    "InsertionForm",
    "InsertionSession",
    "ModelInsertionService",
    "SessionStore",
]
