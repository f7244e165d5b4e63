from decimal import Decimal
import pytest
from aggregator.jobs.flush_scheduler import FlushScheduler
from conftest import new_key


def test_run_once_flushes_and_keeps_report(sweeper, store, transport, offer_factory):
    offer = offer_factory()
    store.add(new_key(), offer, Decimal("2.50"))
    scheduler = FlushScheduler(sweeper, interval_seconds=60)

    report = scheduler.run_once()

    assert report.trigger == "interval"
    assert report.flushed_scopes == 1
    assert scheduler.last_report is report
    assert transport.amounts == [Decimal("2.50")]


def test_start_and_stop_thread(sweeper):
    scheduler = FlushScheduler(sweeper, interval_seconds=30)
    scheduler.start()
    assert scheduler.running is True
    scheduler.stop(timeout=2)
    assert scheduler.running is False
    # nothing ran: the first sweep waits a full interval
    assert scheduler.last_report is None


def test_interval_must_be_positive(sweeper):
    with pytest.raises(ValueError):
        FlushScheduler(sweeper, interval_seconds=0)
