"""Configuration settings for modeldock."""

from pathlib import Path

from huggingface_hub import hf_hub_url

# Paths
DATA_DIR = Path.home() / ".modeldock"
STORAGE_DIR = DATA_DIR / "storage"
CACHE_DIR = DATA_DIR / "cache"
UPLOAD_DIR = DATA_DIR / "uploads"

# Server
HOST = "127.0.0.1"
PORT = 7878

# API
API_PREFIX = "/api"

# Inference defaults, n_threads <= 0 lets the runtime pick
DEFAULT_INFERENCE_PARAMS = {
    "n_threads": -1,
    "n_context": 4096,
    "n_batch": 128,
    "n_predict": 4096,
    "temperature": 0.2,
}

# Built-in catalog (read-only)
LIST_MODELS = [
    {
        "url": hf_hub_url(
            "ngxson/SmolLM2-360M-Instruct-Q8_0-GGUF",
            "smollm2-360m-instruct-q8_0.gguf",
        ),
        "size": 386404992,
    },
    {
        "url": hf_hub_url(
            "Qwen/Qwen2.5-1.5B-Instruct-GGUF",
            "qwen2.5-1.5b-instruct-q4_k_m.gguf",
        ),
        "size": 1117320736,
    },
    {
        "url": hf_hub_url(
            "bartowski/Llama-3.2-1B-Instruct-GGUF",
            "Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        ),
        "size": 807694464,
    },
    {
        "url": hf_hub_url(
            "bartowski/Phi-3.5-mini-instruct-GGUF",
            "Phi-3.5-mini-instruct-Q4_K_M.gguf",
        ),
        "size": 2393232672,
    },
]
