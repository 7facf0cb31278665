from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_file: str
    grid_size: int
    chunk_size: int
    skip_limit: int
    max_sink_retries: int
    retry_backoff_seconds: float
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "paybatch"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./paybatch.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_file=os.getenv("INPUT_FILE", "./input/payments-big.csv"),
        grid_size=int(os.getenv("GRID_SIZE", "4")),
        chunk_size=int(os.getenv("CHUNK_SIZE", "5000")),
        skip_limit=int(os.getenv("SKIP_LIMIT", "0")),
        max_sink_retries=int(os.getenv("MAX_SINK_RETRIES", "0")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
