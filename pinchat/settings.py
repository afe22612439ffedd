"""Settings for the pinchat messaging core."""

from __future__ import annotations

import json
from typing import Tuple, Union

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


class Settings(BaseSettings):
	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
	service_name: str = _env_field("pinchat", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

	# Document store
	store_backend: str = _env_field("memory", "STORE_BACKEND")
	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
	store_key_prefix: str = _env_field("ds", "STORE_KEY_PREFIX")
	store_max_batch_writes: int = _env_field(500, "STORE_MAX_BATCH_WRITES")
	store_commit_retries: int = _env_field(5, "STORE_COMMIT_RETRIES")
	subscription_poll_timeout_seconds: float = _env_field(1.0, "SUBSCRIPTION_POLL_TIMEOUT_SECONDS")
	admin_uids: Union[str, Tuple[str, ...]] = _env_field((), "ADMIN_UIDS")

	# Messaging limits
	message_max_length: int = _env_field(2000, "MESSAGE_MAX_LENGTH")
	message_preview_length: int = _env_field(80, "MESSAGE_PREVIEW_LENGTH")
	orphan_sweep_batch_size: int = _env_field(200, "ORPHAN_SWEEP_BATCH_SIZE")

	# Observability
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		env_nested_delimiter="__",
	)

	@field_validator("admin_uids", mode="before")
	def _split_admin_uids(cls, value):  # type: ignore[override]
		"""Accept empty, comma-separated, JSON list or sequence values."""
		if value in (None, ""):
			return ()
		if isinstance(value, (list, tuple, set)):
			return tuple(str(item).strip() for item in value if str(item).strip())
		if isinstance(value, str):
			text = value.strip()
			if text.startswith("["):
				try:
					data = json.loads(text)
				except ValueError:
					data = None
				if isinstance(data, list):
					return tuple(str(item).strip() for item in data if str(item).strip())
			return tuple(part.strip() for part in text.split(",") if part.strip())
		return ()

	@field_validator("obs_log_level", mode="after")
	def _normalise_level(cls, value: str) -> str:  # type: ignore[override]
		return value.upper()


settings = Settings()
