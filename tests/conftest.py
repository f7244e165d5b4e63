"""Pytest fixtures and factories.

Every test gets its own SQLite file so that the request path, the sweep and the
scheduler thread all see the same rows through separate connections.
"""
import secrets
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional
import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path so 'aggregator' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from aggregator.config import ScopeMode, Settings  # noqa: E402
from aggregator.database import Database  # noqa: E402
from aggregator.integrations.postback import PostbackResult, build_postback_url  # noqa: E402
from aggregator.models.db import Offer, Vertical  # noqa: E402
from aggregator.services.aggregation_store import AggregationStore  # noqa: E402
from aggregator.services.audit import DecisionLogSink, PostbackLedger  # noqa: E402
from aggregator.services.conversion_processor import ConversionProcessor  # noqa: E402
from aggregator.services.flush_sweeper import FlushSweeper  # noqa: E402
from aggregator.services.scope_resolver import OfferRegistry, ScopeResolver  # noqa: E402

SCHEDULER_SECRET = "test-scheduler-secret"
POSTBACK_BASE = "https://tracker.test/postback"


class RecordingTransport:
    """In-memory postback transport that remembers every forward.

    ``fail`` makes every forward report failure and ``fail_offers`` only those
    for the listed offers. ``raise_error`` makes ``send`` raise instead.
    """

    def __init__(self):
        self.calls: List[dict] = []
        self.fail = False
        self.raise_error: Optional[Exception] = None
        self.fail_offers: set = set()

    async def send(self, attribution_key: str, amount: Decimal, offer_id: Optional[str] = None) -> PostbackResult:
        self.calls.append({"clickid": attribution_key, "amount": amount, "offer_id": offer_id})
        if self.raise_error is not None:
            raise self.raise_error
        url = build_postback_url(POSTBACK_BASE, attribution_key, amount, offer_id)
        if self.fail or offer_id in self.fail_offers:
            return PostbackResult(success=False, url=url, status_code=500, error="HTTP error! status: 500")
        return PostbackResult(success=True, url=url, status_code=200, response_text="OK")

    @property
    def amounts(self) -> List[Decimal]:
        return [c["amount"] for c in self.calls]


def new_key() -> str:
    """Random valid attribution key (24 alphanumerics)."""
    return secrets.token_hex(12)


@pytest.fixture()
def database(tmp_path):
    db = Database(f"sqlite+pysqlite:///{tmp_path / 'aggregator_test.db'}")
    db.open()
    db.create_tables()
    yield db
    db.close()


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        default_threshold=Decimal("10.00"),
        postback_base_url=POSTBACK_BASE,
        scheduler_secret=SCHEDULER_SECRET,
        scope_mode=ScopeMode.VERTICAL,
    )


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def store(database):
    return AggregationStore(database)


@pytest.fixture()
def registry(database):
    return OfferRegistry(database)


@pytest.fixture()
def resolver(registry, settings):
    return ScopeResolver(registry, settings)


@pytest.fixture()
def decision_log(database):
    return DecisionLogSink(database)


@pytest.fixture()
def ledger(database):
    return PostbackLedger(database)


@pytest.fixture()
def processor(settings, store, resolver, transport, decision_log, ledger):
    return ConversionProcessor(settings, store, resolver, transport, decision_log, ledger)


@pytest.fixture()
def sweeper(store, resolver, transport, decision_log, ledger):
    return FlushSweeper(store, resolver, transport, decision_log, ledger, postback_base_url=POSTBACK_BASE)


@pytest.fixture()
def client(settings, database, transport):
    from aggregator.main import create_app
    app = create_app(settings, database=database, transport=transport)
    with TestClient(app) as c:
        yield c
    # lifespan shutdown disposed the engine; reopen for fixture teardown and late assertions
    database.open()


@pytest.fixture()
def scheduler_auth():
    return {"Authorization": f"Bearer {SCHEDULER_SECRET}"}

# ---------- Data factory helpers ----------

@pytest.fixture()
def vertical_factory(database):
    def _create(name: Optional[str] = None, threshold: Optional[str] = None):
        with database.transaction() as session:
            v = Vertical(
                name=name or f"Vertical {secrets.token_hex(2)}",
                threshold=Decimal(threshold) if threshold is not None else None,
            )
            session.add(v)
            session.flush()
            return v.id
    return _create


@pytest.fixture()
def offer_factory(database):
    def _create(offer_id: Optional[str] = None, vertical_id: Optional[int] = None):
        offer_id = offer_id or f"offer_{secrets.token_hex(3)}"
        with database.transaction() as session:
            session.add(Offer(id=offer_id, name=f"Offer {offer_id}", vertical_id=vertical_id))
        return offer_id
    return _create
