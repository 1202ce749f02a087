"""
Hourly run: pull pending threads, merge every unseen message into the
sheet, then move each touched thread to its final workflow label.

A thread ends ``done`` only when each of its new messages was merged with
both company and title resolved. Any failure (extraction, reconciliation,
store write) or an unresolved field sends the whole thread to
``needs-review``; other threads are unaffected.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Protocol, Set, Tuple

from .composer import ComposedFields
from .models import InboundEvent, InboundMessage, PendingThread, ThreadState, advance
from .reconciler import Reconciler
from .settings import TrackerConfig

log = logging.getLogger(__name__)

class MessageSource(Protocol):
    def pending_threads(self, max_threads: int) -> List[PendingThread]: ...

    def apply_state(self, thread_id: str, state: ThreadState) -> bool: ...

# (subject, body, sender) -> composed fields
ComposeFn = Callable[[str, str, str], ComposedFields]

@dataclass
class RunStats:
    updated: int = 0
    appended: int = 0
    skipped: int = 0
    errors: int = 0
    manual_review: int = 0
    deferred: int = 0
    thread_states: Dict[str, ThreadState] = field(default_factory=dict)
    processed_ids: List[str] = field(default_factory=list)

    @property
    def threads_done(self) -> int:
        return sum(1 for s in self.thread_states.values() if s is ThreadState.DONE)

    @property
    def threads_review(self) -> int:
        return sum(1 for s in self.thread_states.values() if s is ThreadState.NEEDS_REVIEW)

class WorkflowController:
    def __init__(self, source: MessageSource, reconciler: Reconciler, compose_fn: ComposeFn,
                 config: TrackerConfig, seen_ids: Iterable[str] = (),
                 clock: Callable[[], float] = time.monotonic):
        self.source = source
        self.reconciler = reconciler
        self.compose_fn = compose_fn
        self.config = config
        self.seen_ids: Set[str] = set(seen_ids)
        self._clock = clock

    def _collect(self, threads: List[PendingThread], stats: RunStats) -> List[Tuple[InboundMessage, PendingThread]]:
        known = self.seen_ids | self.reconciler.index.message_ids
        queued: Set[str] = set()
        work = []
        for thread in threads:
            for msg in thread.messages:
                if msg.message_id in known or msg.message_id in queued:
                    stats.skipped += 1
                    continue
                queued.add(msg.message_id)
                work.append((msg, thread))
        work.sort(key=lambda item: item[0].date.timestamp())
        return work

    def _handle(self, msg: InboundMessage, now: datetime, stats: RunStats) -> bool:
        fields = self.compose_fn(msg.subject, msg.body, msg.sender)
        event = InboundEvent(
            message_id=msg.message_id,
            thread_id=msg.thread_id,
            subject=msg.subject,
            body_text=msg.body,
            sender=msg.sender,
            observed_at=msg.date,
            company=fields.company,
            title=fields.title,
            status=fields.status,
            platform=fields.platform,
            confidence=fields.confidence,
        )
        _, created = self.reconciler.apply(event, now=now)
        if created:
            stats.appended += 1
        else:
            stats.updated += 1
        if event.needs_manual_review:
            stats.manual_review += 1
            log.info("Message %s needs manual review (company=%r title=%r)",
                     msg.message_id, event.company, event.title)
            return False
        return True

    def run(self, now: datetime) -> RunStats:
        stats = RunStats()
        started = self._clock()
        threads = self.source.pending_threads(self.config.max_threads)
        work = self._collect(threads, stats)
        if not work:
            log.info("No new application messages to process")
        else:
            log.info("Found %d new messages in %d pending threads", len(work), len(threads))

        states: Dict[str, ThreadState] = {}
        handled = 0
        for msg, thread in work:
            if handled >= self.config.max_messages or self._clock() - started > self.config.max_runtime_seconds:
                stats.deferred = len(work) - handled
                log.warning("Run budget reached after %d messages; %d deferred to next run", handled, stats.deferred)
                break
            handled += 1
            tid = thread.thread_id
            state = states.get(tid, thread.state)
            try:
                ok = self._handle(msg, now, stats)
            except Exception as e:
                log.exception("Failed to process message %s in thread %s: %s", msg.message_id, tid, e)
                stats.errors += 1
                ok = False
            else:
                stats.processed_ids.append(msg.message_id)
                self.seen_ids.add(msg.message_id)
            states[tid] = advance(state, ok)

        deferred_threads = {t.thread_id for _, t in work[handled:]}
        with_work = {t.thread_id for _, t in work}
        for thread in threads:
            tid = thread.thread_id
            if tid in states:
                state = states[tid]
            elif tid not in with_work:
                # every message already merged on an earlier run
                state = advance(thread.state, True)
            else:
                continue
            # threads with deferred messages stay pending until they are all merged
            if tid in deferred_threads and state is not ThreadState.NEEDS_REVIEW:
                continue
            self.source.apply_state(tid, state)
            stats.thread_states[tid] = state

        log.info("Run finished: updated=%d appended=%d skipped=%d errors=%d review=%d threads_done=%d threads_review=%d",
                 stats.updated, stats.appended, stats.skipped, stats.errors, stats.manual_review,
                 stats.threads_done, stats.threads_review)
        return stats
