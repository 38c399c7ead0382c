import os


def strtobool(value):
    return str(value).strip().lower() in ("1", "true", "t", "yes", "y", "on")


SECRET_KEY = os.environ["SECRET_KEY"]
DEBUG = strtobool(os.getenv("FLASK_DEBUG", "false"))

SERVER_NAME = os.getenv(
    "SERVER_NAME", "localhost:{0}".format(os.getenv("PORT", "8000"))
)

# Public URL used to build approve / dismiss links in notifications.
BASE_URL = os.getenv("BASE_URL", f"http://{SERVER_NAME}")

# SQLAlchemy.
pg_user = os.getenv("POSTGRES_USER", "deploywatch")
pg_pass = os.getenv("POSTGRES_PASSWORD", "password")
pg_host = os.getenv("POSTGRES_HOST", "postgres")
pg_port = os.getenv("POSTGRES_PORT", "5432")
pg_db = os.getenv("POSTGRES_DB", pg_user)
db = f"postgresql+psycopg://{pg_user}:{pg_pass}@{pg_host}:{pg_port}/{pg_db}"
SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", db)
SQLALCHEMY_TRACK_MODIFICATIONS = False

# Redis.
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# Polling.
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", 60))

# Celery.
CELERY_CONFIG = {
    "broker_url": REDIS_URL,
    "result_backend": REDIS_URL,
    "include": ["deploywatch.incident.tasks"],
    "beat_schedule": {
        "poll-logs": {
            "task": "deploywatch.incident.tasks.poll_logs",
            "schedule": POLL_INTERVAL_SECONDS,
        },
    },
}

# Vercel log source and deploy hook.
VERCEL_API_URL = os.getenv("VERCEL_API_URL", "https://api.vercel.com")
VERCEL_TOKEN = os.getenv("VERCEL_TOKEN", "")
VERCEL_PROJECT_ID = os.getenv("VERCEL_PROJECT_ID", "")
VERCEL_TEAM_ID = os.getenv("VERCEL_TEAM_ID", "")
VERCEL_TEAM_SLUG = os.getenv("VERCEL_TEAM_SLUG", "")
LOG_STREAM_MAX_EVENTS = int(os.getenv("LOG_STREAM_MAX_EVENTS", 300))
LOG_STREAM_MAX_DURATION_SECONDS = float(
    os.getenv("LOG_STREAM_MAX_DURATION_SECONDS", 2.0)
)
DEPLOY_HOOK_URL = os.getenv("DEPLOY_HOOK_URL", "")

# Incident engine.
DEDUP_WINDOW_MINUTES = int(os.getenv("DEDUP_WINDOW_MINUTES", 30))
APPROVAL_TTL_HOURS = int(os.getenv("APPROVAL_TTL_HOURS", 24))
EVIDENCE_LINES = int(os.getenv("EVIDENCE_LINES", 10))

# Email notifications. Without SMTP_HOST the message is logged instead.
NOTIFY_TO_EMAIL = os.getenv("NOTIFY_TO_EMAIL", "")
MAIL_FROM = os.getenv("MAIL_FROM", "DeployWatch <deploywatch@localhost>")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = strtobool(os.getenv("SMTP_USE_TLS", "true"))
SMTP_TIMEOUT = int(os.getenv("SMTP_TIMEOUT", 30))

# Backboard diagnosis.
BACKBOARD_API_KEY = os.getenv("BACKBOARD_API_KEY", "")
BACKBOARD_ASSISTANT_ID = os.getenv("BACKBOARD_ASSISTANT_ID", "")
BACKBOARD_THREAD_ID = os.getenv("BACKBOARD_THREAD_ID", "")
BACKBOARD_BASE_URL = os.getenv(
    "BACKBOARD_BASE_URL", "https://app.backboard.io/api"
)
BACKBOARD_LLM_PROVIDER = os.getenv("BACKBOARD_LLM_PROVIDER", "openai")
BACKBOARD_MODEL_NAME = os.getenv("BACKBOARD_MODEL_NAME", "gpt-4o-mini")

# Logging / CloudWatch.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CLOUDWATCH_ENABLED = strtobool(os.getenv("CLOUDWATCH_ENABLED", "false"))
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
CLOUDWATCH_LOG_GROUP = os.getenv("CLOUDWATCH_LOG_GROUP", "deploywatch")
CLOUDWATCH_LOG_STREAM = os.getenv("CLOUDWATCH_LOG_STREAM", "app")
CLOUDWATCH_LOG_LEVEL = os.getenv("CLOUDWATCH_LOG_LEVEL", "ERROR")
