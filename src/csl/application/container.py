from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from csl.config import LedgerSettings, get_app_paths, load_settings
from csl.domain.commands import LOAD_DATA, Action
from csl.logging_config import setup_logging
from csl.services.ledger_service import CommandHandler, LedgerStore, Saver
from csl.services.reporting_service import ReportingService

log = logging.getLogger("csl.ledger")


@dataclass(frozen=True)
class AppContainer:
    settings: LedgerSettings
    handler: CommandHandler
    store: LedgerStore
    reporting: ReportingService


def build_container(
    saver: Optional[Saver] = None,
    snapshot: Optional[Mapping[str, Any]] = None,
    settings: Optional[LedgerSettings] = None,
    configure_logging: bool = False,
) -> AppContainer:
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(get_app_paths().logs_dir, level=logging.INFO)

    handler = CommandHandler(settings)
    store = LedgerStore(handler=handler, saver=saver)
    if snapshot is not None:
        loaded = store.dispatch(Action(LOAD_DATA, snapshot))
        if loaded.error:
            log.error("snapshot_rejected error=%s", loaded.error)
    reporting = ReportingService(lambda: store.state)

    return AppContainer(settings=settings, handler=handler, store=store, reporting=reporting)
