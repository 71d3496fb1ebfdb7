import os
from dotenv import load_dotenv

load_dotenv()  # loads .env file into environment variables

class EnvVariables:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///spare_parts.db")
    DB_SCHEMA: str = os.getenv("DB_SCHEMA", "")
    REGISTRY_TABLE: str = os.getenv("REGISTRY_TABLE", "uploaded_spare_parts_sheets")
    LOG_TABLE: str = os.getenv("LOG_TABLE", "logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    PROVISION_RETRIES: int = int(os.getenv("PROVISION_RETRIES", "3"))
    PROVISION_DELAY: int = int(os.getenv("PROVISION_DELAY", "5"))
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
    ROW_FETCH_LIMIT: int = int(os.getenv("ROW_FETCH_LIMIT", "500"))

class Routes:
    INGEST_ROUTE = "/create-and-insert-spare-parts"
