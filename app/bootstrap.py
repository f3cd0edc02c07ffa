"""App bootstrap: load .env and build the one adapter + dispatcher for this process."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from adapters.db.factory import create_adapter
from adapters.metrics.base import Metrics
from app.settings import Settings
from sqlgate.dispatcher import Dispatcher

log = logging.getLogger(__name__)


def load_environment() -> None:
    # existing environment variables win over .env entries
    load_dotenv(override=False)


def adapter_options(settings: Settings, metrics: Optional[Metrics]) -> Dict[str, Any]:
    if settings.engine != "sqlserver":
        return {}
    options: Dict[str, Any] = {"retry_policy": settings.retry_policy()}
    if metrics is not None:
        options["metrics"] = metrics
    return options


def build_dispatcher(settings: Settings, *, metrics: Optional[Metrics] = None) -> Dispatcher:
    """Create (but do not initialize) the adapter selected by `settings`."""
    settings.validate()
    db_type, config = settings.adapter_config()
    adapter = create_adapter(db_type, config, **adapter_options(settings, metrics))
    meta = adapter.metadata()
    log.info("Selected backend: %s", meta.name, extra={"backend": meta.type})
    return Dispatcher(adapter, metrics=metrics)
