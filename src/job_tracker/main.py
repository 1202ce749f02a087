import argparse
import logging
import sys
from datetime import datetime
from functools import partial
import pytz

from .settings import ConfigurationError, Settings, load_settings, load_state, save_state
from .email_client import GmailMessageSource, get_gmail_service
from .composer import compose
from .llm_extractor import build_extractor
from .models import ThreadState
from .reconciler import Reconciler
from .resolver import RecordIndex
from .sheets_writer import SheetRecordStore
from .store import MemoryRecordStore
from .sweeper import sweep_stale
from .workflow import WorkflowController

log = logging.getLogger(__name__)

# processed-id ledger cap; older ids are still covered by the sheet's Email ID column
MAX_LEDGER_IDS = 5000

class _DryRunSource:
    """Reads pending threads but leaves their labels untouched."""

    def __init__(self, source):
        self.source = source

    def pending_threads(self, max_threads):
        return self.source.pending_threads(max_threads)

    def apply_state(self, thread_id: str, state: ThreadState) -> bool:
        log.info("[DRY-RUN] Would label thread %s as %s", thread_id, state.value)
        return False

def _now(cfg: Settings) -> datetime:
    tz = pytz.timezone(cfg.app.get("timezone", "UTC"))
    return datetime.now(tz)

def process_once(cfg: Settings, dry_run: bool = False) -> int:
    tz_name = cfg.app.get("timezone", "UTC")
    source = GmailMessageSource(get_gmail_service(), cfg.tracker.labels)
    source.resolve_labels()
    store = SheetRecordStore.open(cfg.sheets, tz_name)
    records = store.read_all()
    if dry_run:
        store = MemoryRecordStore(records)
        source = _DryRunSource(source)

    index = RecordIndex(records)
    extractor = build_extractor(cfg.gemini_api_key, cfg.extractor)
    compose_fn = partial(compose, config=cfg.tracker, extractor=extractor)
    state = load_state()
    controller = WorkflowController(
        source=source,
        reconciler=Reconciler(store, index, cfg.tracker),
        compose_fn=compose_fn,
        config=cfg.tracker,
        seen_ids=state.get("processed_ids", []),
    )
    stats = controller.run(_now(cfg))

    if not dry_run and stats.processed_ids:
        ledger = list(state.get("processed_ids", [])) + stats.processed_ids
        state["processed_ids"] = ledger[-MAX_LEDGER_IDS:]
        save_state(state)
    print(f"[PROCESS] updated {stats.updated} | new {stats.appended} | errors {stats.errors} | "
          f"done threads {stats.threads_done} | review threads {stats.threads_review}")
    return 0

def sweep_once(cfg: Settings, dry_run: bool = False) -> int:
    store = SheetRecordStore.open(cfg.sheets, cfg.app.get("timezone", "UTC"))
    if dry_run:
        store = MemoryRecordStore(store.read_all())
    swept = sweep_stale(store, cfg.tracker, _now(cfg))
    print(f"[SWEEP] {len(swept)} stale applications marked Rejected")
    return 0

def setup(cfg: Settings) -> int:
    source = GmailMessageSource(get_gmail_service(), cfg.tracker.labels)
    source.ensure_labels()
    query = cfg.gmail.get("filter_query")
    if query:
        source.ensure_filter(query)
    else:
        log.warning("gmail.filter_query not set; no mail will be queued automatically")
    SheetRecordStore.open(cfg.sheets, cfg.app.get("timezone", "UTC"), create=True)
    print("[SETUP] Gmail labels, filter and Applications sheet are ready")
    return 0

def main(argv=None):
    parser = argparse.ArgumentParser(description="Job application email tracker")
    parser.add_argument("--config", help="Path to config.yaml (default: $JT_CONFIG or ./config.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    p = sub.add_parser("process", help="Reconcile pending emails into the sheet (run hourly)")
    p.add_argument("--dry-run", action="store_true", help="Do not write the sheet or change labels")
    s = sub.add_parser("sweep", help="Mark stale applications as Rejected (run daily)")
    s.add_argument("--dry-run", action="store_true", help="Do not write the sheet")
    sub.add_parser("setup", help="Create Gmail labels, the queue filter and the Applications sheet")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        cfg = load_settings(args.config)
        if args.command == "process":
            return process_once(cfg, dry_run=args.dry_run)
        if args.command == "sweep":
            return sweep_once(cfg, dry_run=args.dry_run)
        return setup(cfg)
    except ConfigurationError as e:
        log.error("Run aborted: %s", e)
        return 2

if __name__ == "__main__":
    sys.exit(main())
