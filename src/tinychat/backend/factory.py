from typing import Any

from .base import InferenceBackend


def create_inference_backend(kind: str, **config: Any) -> InferenceBackend:
    """Create an inference backend instance.

    This factory function hides the instantiation logic for different runtimes.

    Args:
        kind: Backend type ('llama_cpp'; aliases 'llama', 'gguf')
        **config: Backend-specific configuration
            For llama_cpp:
                - model_repo: str (required) Hugging Face repo id or local .gguf path
                - model_file: str | None
                - models_dir: str | Path (default: './models')
                - context_size: int (default: 4096)
                - gpu_layers: int (default: -1)
                - temperature: float (default: 0.7)

    Returns:
        Initialized backend instance

    Raises:
        ValueError: If backend type is not supported
        TypeError: If required configuration is missing

    Examples:
        >>> backend = create_inference_backend(
        ...     "llama_cpp",
        ...     model_repo="bartowski/Llama-3.2-1B-Instruct-GGUF"
        ... )
    """
    kind_lower = kind.lower()

    if kind_lower in ("llama_cpp", "llama", "gguf"):
        if "model_repo" not in config:
            raise TypeError("llama_cpp backend requires 'model_repo' in config")
        from .llama_cpp import LlamaCppBackend
        return LlamaCppBackend(**config)

    raise ValueError(
        f"Unsupported backend: {kind}. "
        f"Supported backends: 'llama_cpp'"
    )
