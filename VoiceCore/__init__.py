"""clonecast core package.

Exposes the dependency-light helpers at the package root for convenience.
The model-facing modules (``model_worker``, ``model_registry``,
``batch_synthesizer``, ``podcast``) import :mod:`ipc`, which itself imports
:mod:`VoiceCore.errors`; import them explicitly to keep the package root free
of import cycles.
"""

from .config_manager import ConfigManager  # noqa: F401
from .errors import (  # noqa: F401
    ClonecastError,
    ConfigurationError,
    ModelError,
    TransportError,
    ValidationError,
)
from .silence import detect_silence, empty_segment, remove_silence, split_on_silence  # noqa: F401
from .text_chunker import max_chars_for_reference, split_gen_text, split_text_into_batches  # noqa: F401
