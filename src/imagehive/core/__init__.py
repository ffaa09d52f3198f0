"""Core functionality for the ImageHive chat relay.

Architecture Overview
---------------------
The core module follows a layered architecture:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with IMAGEHIVE_ in .env files

2. **Backend Layer** (backend.py):
   - Narrow ``InferenceBackend`` interface
   - OpenAI-compatible chat-completions adapter over httpx

3. **Relay Layer** (relay.py, readiness.py):
   - Chat relay with degrade-to-message and event streaming
   - Readiness probing and the startup handshake

4. **Support Utilities**:
   - transcript.py / events.py: wire data model
   - hardware.py: cached GPU detection
   - system_prompt.py: the fixed system preamble
   - storage.py: JSON-file settings and gallery stores
   - image_client.py: remote image API client
"""

from imagehive.core.backend import InferenceBackend, OpenAIChatBackend
from imagehive.core.config import ImageHiveConfig, config
from imagehive.core.readiness import ReadinessProber, ReadinessStatus
from imagehive.core.relay import ChatRelay, ChatReply

__all__ = [
    "ChatRelay",
    "ChatReply",
    "ImageHiveConfig",
    "InferenceBackend",
    "OpenAIChatBackend",
    "ReadinessProber",
    "ReadinessStatus",
    "config",
]
