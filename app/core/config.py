import os
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()

DEFAULT_ATTACHMENT_MIME_ALLOWLIST = ",".join([
    "image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/zip",
    "text/plain",
    "text/csv",
])


def _csv(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    # Environment setting
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

    # OpenAI API KEY (chatbot assistant)
    openai_api_key: str = os.getenv("OPENAI_API_KEY")
    CHATBOT_MODEL = os.getenv("CHATBOT_MODEL", "gpt-4o-mini")

    # Clerk Configuration
    CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY")

    # Shared secret for the scheduler calling the chatbot cleanup endpoint
    CLEANUP_SECRET = os.getenv("CLEANUP_SECRET")

    # db creds
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    DB_NAME = os.getenv("DB_NAME", "yamifit")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_SSL = os.getenv("DB_SSL", "false").lower() == "true"

    CORS_ORIGINS = _csv(os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:3000,http://localhost:8080",
    ))

    # Coaching rules
    MAX_CLIENTS_PER_COACH = int(os.getenv("MAX_CLIENTS_PER_COACH", "10"))
    COOLDOWN_DAYS = int(os.getenv("COOLDOWN_DAYS", "5"))

    # Chat attachments
    MAX_ATTACHMENT_BYTES = int(os.getenv("MAX_ATTACHMENT_BYTES", str(10 * 1024 * 1024)))
    ATTACHMENT_MIME_ALLOWLIST = _csv(os.getenv("ATTACHMENT_MIME_ALLOWLIST", DEFAULT_ATTACHMENT_MIME_ALLOWLIST))
    ATTACHMENT_STORAGE_DIR = os.getenv("ATTACHMENT_STORAGE_DIR", "chat_attachments")
    MAX_MESSAGE_BODY_CHARS = int(os.getenv("MAX_MESSAGE_BODY_CHARS", "4000"))

    # Chatbot retention
    CHATBOT_TTL_HOURS = int(os.getenv("CHATBOT_TTL_HOURS", "24"))
    CHATBOT_SWEEP_INTERVAL = int(os.getenv("CHATBOT_SWEEP_INTERVAL", "3600"))  # seconds
    CHATBOT_MAX_CONTENT_CHARS = int(os.getenv("CHATBOT_MAX_CONTENT_CHARS", "8000"))
    CHATBOT_CONTEXT_MESSAGES = int(os.getenv("CHATBOT_CONTEXT_MESSAGES", "20"))
    CHATBOT_MODEL_TIMEOUT_SECONDS = float(os.getenv("CHATBOT_MODEL_TIMEOUT_SECONDS", "60"))

    # Storage deadlines and retry policy
    STORAGE_READ_TIMEOUT_SECONDS = float(os.getenv("STORAGE_READ_TIMEOUT_SECONDS", "5"))
    STORAGE_WRITE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_WRITE_TIMEOUT_SECONDS", "10"))
    RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_MS = int(os.getenv("RETRY_BASE_DELAY_MS", "200"))

    # Realtime
    PRESENCE_QUEUE_SIZE = int(os.getenv("PRESENCE_QUEUE_SIZE", "256"))

    # Build URL with SSL requirement based on environment
    def _build_database_url(self):
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit
        base_url = f"postgresql+asyncpg://{self.DB_USER}:{quote_plus(self.DB_PASSWORD)}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        if self.DB_SSL:
            return f"{base_url}?ssl=require"
        return base_url

    @property
    def DATABASE_URL(self):
        return self._build_database_url()

    @property
    def IS_DEVELOPMENT(self) -> bool:
        return self.ENVIRONMENT == "development"


settings = Settings()
