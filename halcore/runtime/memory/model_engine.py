"""
Model Engine - Language Model Interface and Local Transformers Backend

WHAT: LanguageModel protocol plus a Hugging Face transformers implementation
WHERE: halcore/runtime/memory/model_engine.py - manages model loading and generation
WHO: ConversationSession (replies) and Summarizer (summaries)
TIME: Small instruct models: ~1-3s per reply on CPU after load

The memory engine only needs "prompt in, text out" and an availability check.
Any object with `is_available()` and `generate(prompt)` can stand in for the
model; `TransformersModelEngine` is the bundled local backend (extra `llm`).
Calls have no timeout: they return text or raise.
"""

from __future__ import annotations

import importlib
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ...errors import MemoryEngineError, MissingDependencyError

logger = logging.getLogger(__name__)


class ModelNotLoadedError(RuntimeError):
    """Raised when generation is attempted before the model is loaded."""


class ModelUnavailableError(MemoryEngineError):
    """Raised when no language model can serve the request."""


@runtime_checkable
class LanguageModel(Protocol):
    def is_available(self) -> bool:
        """Whether `generate` can be called right now."""

    def generate(self, prompt: str) -> str:
        """Return the model's completion for *prompt*."""


REQUIRED_PACKAGES = ("transformers", "torch")


@dataclass(slots=True)
class TransformersModelConfig:
    """Configuration for a local causal LM served through transformers."""

    model_id: str = "Qwen/Qwen2.5-0.5B-Instruct"
    device: str = "cpu"
    device_map: Optional[Any] = None
    dtype: str = "float32"
    max_new_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9
    repetition_penalty: float = 1.05
    trust_remote_code: bool = False

    @staticmethod
    def from_env() -> "TransformersModelConfig":
        defaults = TransformersModelConfig()
        return TransformersModelConfig(
            model_id=os.getenv("HAL_MODEL_ID", defaults.model_id),
            device=os.getenv("HAL_MODEL_DEVICE", defaults.device),
            dtype=os.getenv("HAL_MODEL_DTYPE", defaults.dtype),
            max_new_tokens=int(os.getenv("HAL_MODEL_MAX_NEW_TOKENS", str(defaults.max_new_tokens))),
        )


class TransformersModelEngine:
    """Handles loading and generation for a local transformers model."""

    def __init__(self, config: TransformersModelConfig | None = None) -> None:
        self.config = config or TransformersModelConfig()
        self._tokenizer = None
        self._model = None
        self._generation_kwargs: Dict[str, Any] = {}
        self._modules: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @staticmethod
    def dependencies_available() -> bool:
        for package in REQUIRED_PACKAGES:
            try:
                importlib.import_module(package)
            except ImportError:
                return False
        return True

    def _ensure_dependencies(self) -> None:
        missing: list[str] = []
        modules = {}
        for package in REQUIRED_PACKAGES:
            try:
                modules[package] = importlib.import_module(package)
            except ImportError:
                missing.append(package)
        if missing:
            raise MissingDependencyError(
                "Missing model dependencies: " + ", ".join(missing) + ". Install with `pip install hal-memory[llm]`."
            )
        self._modules = modules

    def load(self) -> None:
        """Load tokenizer and model into memory (idempotent)."""

        with self._lock:
            if self.is_loaded():
                return
            self._ensure_dependencies()
            transformers = self._modules["transformers"]
            torch = self._modules["torch"]

            model_id = self.config.model_id
            self._tokenizer = transformers.AutoTokenizer.from_pretrained(
                model_id, trust_remote_code=self.config.trust_remote_code
            )
            load_kwargs: Dict[str, Any] = {
                "trust_remote_code": self.config.trust_remote_code,
                "torch_dtype": getattr(torch, self.config.dtype, None),
            }
            if self.config.device_map is not None:
                load_kwargs["device_map"] = self.config.device_map
            model = transformers.AutoModelForCausalLM.from_pretrained(model_id, **load_kwargs)
            if self.config.device_map is None:
                model = model.to(self.config.device)
            self._model = model
            self._generation_kwargs = {
                "max_new_tokens": self.config.max_new_tokens,
                "temperature": self.config.temperature,
                "top_p": self.config.top_p,
                "repetition_penalty": self.config.repetition_penalty,
                "do_sample": self.config.temperature > 0,
            }
            logger.info(f"Loaded language model {model_id} on {self.config.device_map or self.config.device}")

    def is_loaded(self) -> bool:
        return self._model is not None and self._tokenizer is not None

    def is_available(self) -> bool:
        return self.is_loaded()

    def generate(self, prompt: str, **overrides: Any) -> str:
        if not self.is_loaded():
            raise ModelNotLoadedError("Language model is not loaded; call load() first")

        tokenizer = self._tokenizer
        model = self._model
        kwargs = dict(self._generation_kwargs)
        kwargs.update(overrides)

        try:
            model_device = model.device  # type: ignore[attr-defined]
        except AttributeError:  # sharded models may not expose .device
            model_device = next(model.parameters()).device  # type: ignore[union-attr]

        inputs = tokenizer(prompt, return_tensors="pt").to(model_device)  # type: ignore[misc]
        output_ids = model.generate(**inputs, **kwargs)  # type: ignore[union-attr]
        response = tokenizer.decode(  # type: ignore[union-attr]
            output_ids[0][inputs["input_ids"].shape[-1] :], skip_special_tokens=True
        )
        return response.strip()


class UnavailableLanguageModel:
    """Placeholder used when no backend is configured; every call fails."""

    def __init__(self, reason: str = "Language model is not available on this device") -> None:
        self.reason = reason

    def is_available(self) -> bool:
        return False

    def generate(self, prompt: str) -> str:
        raise ModelUnavailableError(self.reason)


def require_available(model: LanguageModel | None) -> LanguageModel:
    """Return *model* or raise ModelUnavailableError when it cannot serve calls."""

    if model is None:
        raise ModelUnavailableError("No language model configured")
    if not model.is_available():
        raise ModelUnavailableError(getattr(model, "reason", "Language model is not available"))
    return model


__all__ = [
    "LanguageModel",
    "MissingDependencyError",
    "ModelNotLoadedError",
    "ModelUnavailableError",
    "REQUIRED_PACKAGES",
    "TransformersModelConfig",
    "TransformersModelEngine",
    "UnavailableLanguageModel",
    "require_available",
]
