"""Process settings.

Quick start::

    from reconspine.core.config import get_settings

    settings = get_settings()
    print(settings.storage_dir)   # data/reconciliation

Guardrails:
    ❌ Parsing env vars ad-hoc in each module
    ✅ ``get_settings().storage_dir`` from the cached instance
"""

from reconspine.core.config.settings import ReconSettings, clear_settings_cache, get_settings

__all__ = ["ReconSettings", "get_settings", "clear_settings_cache"]
