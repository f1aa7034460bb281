"""Pytest configuration for rpchat tests.

Sets up minimal environment for unit tests without requiring a model
provider or a tokenizer download.
"""

import os
import sys
import tempfile

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Set minimal environment variables for Settings
os.environ.setdefault("RPCHAT_DB_PATH", os.path.join(tempfile.gettempdir(), "rpchat-test.db"))
os.environ.setdefault("RPCHAT_DEFAULT_MODEL", "ollama/test-model")
os.environ.setdefault("RPCHAT_PROMPT_VARIANT", "markdown")
