import pytest
import httpx

from classification import ClassificationEngine, SQLiteRuleStore
from classification.compiler import PatternCompiler
from config import ConfigManager
from database import DatabaseManager
from metrics import MetricsCollector

_VIGIL_ENV = (
    "VIGIL_ENVIRONMENT",
    "VIGIL_LOG_LEVEL",
    "VIGIL_DB_MAX_CONNECTIONS",
    "VIGIL_RULE_TYPES",
    "VIGIL_PROCESSING_ORDER",
    "VIGIL_DEFAULT_PRIORITY",
    "VIGIL_UNDERPERFORMER_THRESHOLD",
    "VIGIL_STALE_WINDOW_DAYS",
    "VIGIL_RECORD_TESTER_RUNS",
    "VIGIL_PERFORMANCE_WRITE_THROUGH",
    "VIGIL_SEED_RULES_PATH",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every test at its own SQLite file and a clean environment."""
    for name in _VIGIL_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VIGIL_DB_PATH", str(tmp_path / "vigil_test.db"))
    MetricsCollector().reset()
    yield


@pytest.fixture
def config():
    return ConfigManager().load()


@pytest.fixture
def db_manager(config):
    manager = DatabaseManager(config.database)
    yield manager
    manager.close()


@pytest.fixture
def store(db_manager):
    return SQLiteRuleStore(db_manager)


@pytest.fixture
def compiler():
    return PatternCompiler()


@pytest.fixture
def engine(store, config, compiler):
    return ClassificationEngine(store, config=config.classification, compiler=compiler)


@pytest.fixture
def make_rule(engine):
    """Create a rule through the validation gate."""
    def _make(rule_type="severity", pattern="severe", value="Severe", priority=100, confidence=0.9, **extra):
        return engine.create_rule({
            "rule_type": rule_type,
            "condition_pattern": pattern,
            "classification_value": value,
            "priority": priority,
            "confidence_score": confidence,
            **extra
        })
    return _make


@pytest.fixture
def severity_rules(make_rule):
    """Rule A (extreme|severe, 100, 0.9) and rule B (severe, 50, 0.6)."""
    rule_a = make_rule(pattern="(extreme|severe)", value="Severe", priority=100, confidence=0.9)
    rule_b = make_rule(pattern="severe", value="Moderate", priority=50, confidence=0.6)
    return rule_a, rule_b


@pytest.fixture
async def client():
    """Async API client with explicit lifespan management."""
    from api import app, lifespan

    async with lifespan(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
