"""
Main Orchestrator: Complete Vigil System
Wires configuration, persistence and the classification engine with
lifecycle management.
"""
import logging
from typing import Optional, Dict, Any
from pathlib import Path

from config import load_config, VigilConfig
from database import DatabaseManager
from classification import ClassificationEngine, SQLiteRuleStore
from metrics import MetricsCollector
from exceptions import VigilError, ConfigurationError

# IMPORTANT:
# Do NOT configure logging here. Configure it in cli.py / api.py (RichHandler),
# otherwise you'll get duplicated handlers / messy output.
logger = logging.getLogger("VigilOrchestrator")


class VigilSystem:
    """
    Main orchestrator for the Vigil system.
    Owns the database pool and the engine built on top of it.
    """

    def __init__(self, config: Optional[VigilConfig] = None):
        # Load configuration
        self.config = config or load_config()
        logger.info(f"Vigil System initializing: environment={self.config.system.environment}")

        # Initialize database
        self.db_manager = DatabaseManager(self.config.database)
        logger.info(f"Database initialized: {self.config.database.path}")

        try:
            self.store = SQLiteRuleStore(self.db_manager)
            self.engine = ClassificationEngine(self.store, config=self.config.classification)
            self._seed_rules()
        except VigilError:
            self.db_manager.close()
            raise

        logger.info("All components initialized successfully")

    def _seed_rules(self) -> None:
        seed_path = self.config.classification.seed_rules_path
        if not seed_path:
            return

        if not Path(seed_path).exists():
            raise ConfigurationError(
                f"Seed rules path not found: {seed_path}",
                component="VigilSystem"
            )

        if self.store.load_rules():
            logger.info("Rule store already populated; skipping seed import")
            return

        imported = self.engine.import_rules(seed_path, created_by="seed")
        logger.info(f"Seeded {len(imported)} rules from {seed_path}")

    def get_metrics_summary(self) -> Dict[str, Any]:
        return MetricsCollector().get_summary()

    def shutdown(self) -> None:
        logger.info("Shutting down Vigil system...")
        try:
            written = self.engine.flush()
            if written:
                logger.info(f"Flushed {written} pending performance record(s)")
        except VigilError as e:
            logger.error(f"Failed to flush performance counters during shutdown: {e.message}")
        finally:
            self.db_manager.close()
            logger.info("Database connections closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


if __name__ == "__main__":
    print("Please use the CLI tool or API to run Vigil.")
