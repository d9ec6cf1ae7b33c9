from .config import TranscriptionConfig, load_config

__all__ = ["TranscriptionConfig", "load_config"]
