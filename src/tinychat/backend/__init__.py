from .base import InferenceBackend, ModelHandle, ProgressCallback, TokenCallback
from .factory import create_inference_backend
from .models import ChatTurn, ModelInput, TokenAction

__all__ = [
    "ChatTurn",
    "InferenceBackend",
    "ModelHandle",
    "ModelInput",
    "ProgressCallback",
    "TokenAction",
    "TokenCallback",
    "create_inference_backend",
]
