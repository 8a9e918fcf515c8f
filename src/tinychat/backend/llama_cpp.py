"""llama.cpp inference backend.

Downloads GGUF weights from Hugging Face and runs them with llama-cpp-python.
Reference: https://github.com/abetlen/llama-cpp-python
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from huggingface_hub import hf_hub_download, list_repo_files, try_to_load_from_cache

try:
    from llama_cpp import Llama, LlamaRAMCache, llama_chat_format
    LLAMA_CPP_AVAILABLE = True
except ImportError:
    LLAMA_CPP_AVAILABLE = False
    Llama = None
    LlamaRAMCache = None
    llama_chat_format = None

from .base import InferenceBackend, ModelHandle, ProgressCallback, TokenCallback
from .models import ModelInput, TokenAction

logger = logging.getLogger(__name__)

# Quantizations tried in order when the repository holds several GGUF files
QUANT_PREFERENCES = ["Q4_K_M", "Q5_K_M", "Q8_0", "Q4_0"]

# Share of the progress bar spent on locating/downloading weights
DOWNLOAD_SHARE = 0.9

_SHARD_PATTERN = re.compile(r"(.*)-00001-of-(\d{5})\.gguf$")


def select_weights_file(files: Sequence[str]) -> str:
    """Pick the GGUF file to use from a repository listing.

    Args:
        files: Repository file names

    Returns:
        Preferred GGUF file name (first shard for split models)

    Raises:
        ValueError: If no GGUF file is present
    """
    gguf_files = [f for f in files if f.endswith(".gguf")]
    if not gguf_files:
        raise ValueError("No GGUF files found")

    # Later shards are fetched alongside the first one
    candidates = [f for f in gguf_files if not re.search(r"-000(0[2-9]|[1-9]\d)-of-", f)]
    for quant in QUANT_PREFERENCES:
        matches = [f for f in candidates if quant.lower() in f.lower()]
        if matches:
            return sorted(matches)[0]
    return sorted(candidates or gguf_files)[0]


def shard_names(filename: str) -> list[str]:
    """Expand the first shard of a split GGUF into every shard name."""
    match = _SHARD_PATTERN.search(filename)
    if not match:
        return [filename]
    base, total = match.group(1), int(match.group(2))
    return [f"{base}-{i:05d}-of-{total:05d}.gguf" for i in range(1, total + 1)]


def trim_at_stop(text: str, stops: Sequence[str]) -> str:
    """Cut ``text`` at the earliest occurrence of any stop string."""
    cut = len(text)
    for stop in stops:
        index = text.find(stop)
        if index != -1:
            cut = min(cut, index)
    return text[:cut]


def _stop_strings(rendered: Any) -> list[str]:
    stop = getattr(rendered, "stop", None) or []
    if isinstance(stop, str):
        stop = [stop]
    return [s for s in stop if s]


class LlamaCppHandle(ModelHandle):
    """Loaded llama.cpp model.

    Hidden design decisions:
    - Chat template rendering (model's Jinja template, ChatML fallback)
    - Token sampling parameters
    - End-of-sequence detection
    """

    def __init__(self, backend: "LlamaCppBackend", llm: Any, temperature: float = 0.7):
        self._backend = backend
        self._llm = llm
        self._temperature = temperature
        self._formatter = self._chat_formatter()

    def _chat_formatter(self) -> Any:
        template = (self._llm.metadata or {}).get("tokenizer.chat_template")
        if not template:
            return llama_chat_format.format_chatml

        def token_text(token: int) -> str:
            return self._llm.detokenize([token], special=True).decode("utf-8", errors="ignore")

        return llama_chat_format.Jinja2ChatFormatter(
            template=template,
            eos_token=token_text(self._llm.token_eos()),
            bos_token=token_text(self._llm.token_bos()),
        )

    def seed(self, value: int) -> None:
        # llama.cpp seeds are 32-bit
        self._llm.set_seed(value & 0xFFFFFFFF)

    def generate(self, model_input: ModelInput, on_tokens: TokenCallback) -> str:
        self._backend.mark_inference_started()

        rendered = self._formatter(messages=model_input.as_dicts())
        prompt_tokens = self._llm.tokenize(
            rendered.prompt.encode("utf-8"),
            add_bos=not getattr(rendered, "added_special", False),
            special=True,
        )
        if len(prompt_tokens) >= self._llm.n_ctx():
            raise ValueError(
                f"Prompt is {len(prompt_tokens)} tokens; context window is {self._llm.n_ctx()}"
            )

        stops = _stop_strings(rendered)
        stop_tokens = self._stop_tokens(stops)
        stop_bytes = [s.encode("utf-8") for s in stops]
        longest = max((len(s) for s in stop_bytes), default=0)
        tail = b""

        tokens: list[int] = []
        for token in self._llm.generate(prompt_tokens, temp=self._temperature, reset=True):
            if token in stop_tokens:
                break
            tokens.append(token)
            if stop_bytes:
                tail += self._llm.detokenize([token], special=True)
                if any(s in tail for s in stop_bytes):
                    # Stop text spread over several tokens; trimmed below
                    logger.debug("Stop text reached after %d tokens", len(tokens))
                    break
                tail = tail[-longest:]
            if on_tokens(tokens) is TokenAction.STOP:
                break
            if len(prompt_tokens) + len(tokens) >= self._llm.n_ctx():
                logger.info("Context window full after %d tokens", len(tokens))
                break

        if not tokens:
            return ""
        return trim_at_stop(self.decode(tokens), stops)

    def _stop_tokens(self, stops: Sequence[str]) -> set[int]:
        """End-of-sequence plus every stop string that is a single token."""
        stop_tokens = {self._llm.token_eos()}
        for stop in stops:
            encoded = self._llm.tokenize(stop.encode("utf-8"), add_bos=False, special=True)
            if len(encoded) == 1:
                stop_tokens.add(encoded[0])
        return stop_tokens

    def decode(self, tokens: Sequence[int]) -> str:
        if not tokens:
            raise ValueError("Cannot decode an empty token buffer")
        return self._llm.detokenize(list(tokens)).decode("utf-8", errors="ignore")

    def close(self) -> None:
        close = getattr(self._llm, "close", None)
        if close is not None:
            close()


class LlamaCppBackend(InferenceBackend):
    """llama.cpp backend for GGUF weights hosted on Hugging Face.

    Hidden design decisions:
    - Weights discovery (local path, Hugging Face cache, download)
    - Quantization choice and split-file handling
    - GPU offload and context size
    - Resource limit mapped to the llama.cpp RAM prompt cache
    """

    def __init__(
        self,
        model_repo: str,
        model_file: str | None = None,
        models_dir: str | Path = "./models",
        context_size: int = 4096,
        gpu_layers: int = -1,
        temperature: float = 0.7,
        verbose: bool = False,
    ):
        """Initialize llama.cpp backend.

        Args:
            model_repo: Hugging Face repository id, or a path to a local .gguf file
            model_file: Exact GGUF file in the repository (None picks by quantization)
            models_dir: Directory where downloaded weights are stored
            context_size: Context window in tokens
            gpu_layers: Layers to offload to the GPU (-1 means all)
            temperature: Sampling temperature
            verbose: Let llama.cpp print its own load logs
        """
        if not LLAMA_CPP_AVAILABLE:
            raise ImportError(
                "llama.cpp backend requires llama-cpp-python. "
                "Install with: pip install 'tinychat[llama]'"
            )
        super().__init__()
        self._model_repo = model_repo
        self._model_file = model_file
        self._models_dir = Path(models_dir)
        self._context_size = context_size
        self._gpu_layers = gpu_layers
        self._temperature = temperature
        self._verbose = verbose

    @property
    def model_repo(self) -> str:
        return self._model_repo

    def resolve_model_path(self, on_progress: ProgressCallback) -> Path:
        """Locate the weights, downloading them if needed.

        Args:
            on_progress: Receives download fraction in [0.0, 1.0]

        Returns:
            Path of the (first shard of the) GGUF file
        """
        local = Path(self._model_repo).expanduser()
        if local.suffix.lower() == ".gguf":
            if not local.exists():
                raise FileNotFoundError(f"Model file not found: {local}")
            return local

        filename = self._model_file or select_weights_file(list_repo_files(self._model_repo))
        shards = shard_names(filename)

        if all((self._models_dir / shard).exists() for shard in shards):
            return self._models_dir / shards[0]

        cached = [try_to_load_from_cache(self._model_repo, shard) for shard in shards]
        if all(isinstance(path, str) for path in cached):
            logger.info("Using cached weights for %s", self._model_repo)
            return Path(cached[0])

        self._models_dir.mkdir(parents=True, exist_ok=True)
        paths: list[str] = []
        for index, shard in enumerate(shards):
            on_progress(index / len(shards))
            logger.info("Downloading %s (%d/%d)", shard, index + 1, len(shards))
            paths.append(hf_hub_download(
                repo_id=self._model_repo,
                filename=shard,
                local_dir=self._models_dir,
            ))
        on_progress(1.0)
        return Path(paths[0])

    def load(self, on_progress: ProgressCallback) -> LlamaCppHandle:
        model_path = self.resolve_model_path(lambda fraction: on_progress(fraction * DOWNLOAD_SHARE))
        on_progress(DOWNLOAD_SHARE)

        logger.info("Loading weights from %s", model_path)
        llm = Llama(
            model_path=str(model_path),
            n_ctx=self._context_size,
            n_gpu_layers=self._gpu_layers,
            verbose=self._verbose,
        )
        if self.resource_limit:
            llm.set_cache(LlamaRAMCache(capacity_bytes=self.resource_limit))

        on_progress(1.0)
        return LlamaCppHandle(self, llm, temperature=self._temperature)

    @property
    def backend_type(self) -> str:
        return "llama_cpp"
