from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DB_URL: str = "sqlite+aiosqlite:///./ledger_indexer.db"
    DB_ECHO: bool = False

    MIRROR_NODE_URL: str = "https://testnet.mirrornode.hedera.com"
    MIRROR_TIMEOUT_SECONDS: float = 30.0
    PAGE_LIMIT: int = 100
    POLL_LIMIT: int = 50
    PAGE_DELAY_SECONDS: float = 0.1
    POLL_INTERVAL_SECONDS: float = 5.0

    TOPIC_MAIN: Optional[str] = None
    TOPIC_MEDICAL_RECORDS: Optional[str] = None
    TOPIC_CONSENT: Optional[str] = None
    TOPIC_PRESCRIPTIONS: Optional[str] = None
    TOPIC_VACCINATIONS: Optional[str] = None
    TOPIC_NGO_ACTIVITIES: Optional[str] = None

    # When false the API only reads the store; run_indexer does the indexing.
    API_RUN_INDEXER: bool = True

    STATS_INTERVAL_HOURS: float = 1.0
    STATS_HISTORY_DAYS: int = 30

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    class Config:
        env_file = ".env"
        extra = "ignore"

    def configured_topics(self) -> Dict[str, str]:
        """Named topic ids that are actually set, in a stable order."""
        topics = {
            "main": self.TOPIC_MAIN,
            "medical_records": self.TOPIC_MEDICAL_RECORDS,
            "consent": self.TOPIC_CONSENT,
            "prescriptions": self.TOPIC_PRESCRIPTIONS,
            "vaccinations": self.TOPIC_VACCINATIONS,
            "ngo_activities": self.TOPIC_NGO_ACTIVITIES,
        }
        return {name: topic_id for name, topic_id in topics.items() if topic_id}


settings = Settings()
