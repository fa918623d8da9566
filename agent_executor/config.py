"""
Configuration access for the agent executor.

Exposes the loaded application configuration as ``config``. Core classes
take explicit configuration values in their constructors and only fall
back to this object for defaults.
"""

from .config_loader import load_app_config

config = load_app_config()
