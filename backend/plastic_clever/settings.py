from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=720, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed admin, created at startup when both are set
	seed_admin_email: str | None = Field(default=None, validation_alias="SEED_ADMIN_EMAIL")
	seed_admin_password: str | None = Field(default=None, validation_alias="SEED_ADMIN_PASSWORD")

	# Uploaded files (photo consent, evidence, audit documents)
	upload_dir: str = Field(default="./uploads", validation_alias="UPLOAD_DIR")
	max_upload_bytes: int = Field(default=25 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
	# Base for links handed out by the API (teacher invitations)
	public_base_url: str = Field(default="http://localhost:8000", validation_alias="PUBLIC_BASE_URL")
	invitation_ttl_days: int = Field(default=7, validation_alias="INVITATION_TTL_DAYS")

	# Comma separated list of allowed browser origins
	cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000", validation_alias="CORS_ORIGINS")

	# Gemini is used to translate evidence requirements
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# Maintenance loop (session purge, stuck round repair)
	maintenance_interval_seconds: int = Field(default=24 * 60 * 60, validation_alias="MAINTENANCE_INTERVAL_SECONDS")
	session_retention_days: int = Field(default=30, validation_alias="SESSION_RETENTION_DAYS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def cors_origin_list(self) -> list[str]:
		return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

settings = Settings()
