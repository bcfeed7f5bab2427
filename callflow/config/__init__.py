"""
Configuration module for the call orchestration service.

Key components:
- constants: Application-wide constants, including call status names, polling
  intervals, voice API message types and audio format values.
- logging_config: A consistent logging setup with console and rotating file
  output, shared by every module through the ``callflow`` logger.
- settings: Environment-driven settings (provider credentials, webhook base URL,
  timeouts) loaded by a pydantic-settings model from the environment or `.env`.

Usage examples:
```python
from callflow.config.constants import LOGGER_NAME, STATUS_CONNECTED
from callflow.config.logging_config import configure_logging
from callflow.config.settings import get_settings

logger = configure_logging()
settings = get_settings()
logger.info(f"Webhooks will be served from {settings.public_base_url}")
```
"""
