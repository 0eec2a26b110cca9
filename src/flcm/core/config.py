"""Configuration models for the FLCM pipeline.

Every setting can be overridden from the environment with the pattern
``FLCM_<SECTION>__<KEY>`` (e.g. ``FLCM_STORAGE__MAX_BACKUPS=10``).
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PersistenceMode(str, Enum):
    """How intermediate stage documents are written during a run."""

    STRICT = "strict"
    BEST_EFFORT = "best_effort"
    DISABLED = "disabled"


class CancelPolicy(str, Enum):
    """What happens to documents a cancelled run already persisted."""

    RETAIN = "retain"
    DELETE = "delete"


class StorageSettings(BaseModel):
    """On-disk layout.

    Relative directories resolve against ``root``.
    """

    root: Path = Field(default_factory=Path.cwd, description="Workspace root")
    docs_dir: Path = Field(default=Path("docs"), description="Document tree")
    data_dir: Path = Field(default=Path(".flcm/data"), description="Internal data directory")
    index_file: str = Field(default="document-index.json", description="Index file name inside data_dir")
    enable_backups: bool = True
    max_backups: int = Field(default=5, ge=0, description="Backups retained per document")
    validate_on_save: bool = True
    check_references: bool = Field(default=True, description="Require upstream ids to be stored before saving")

    @property
    def abs_docs_dir(self) -> Path:
        return self._resolve(self.docs_dir)

    @property
    def abs_data_dir(self) -> Path:
        return self._resolve(self.data_dir)

    @property
    def abs_index_path(self) -> Path:
        return self.abs_data_dir / self.index_file

    def _resolve(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return self.root / path


class PipelineSettings(BaseModel):
    """Stage machine behaviour."""

    validate_transitions: bool = True
    persistence: PersistenceMode = PersistenceMode.STRICT
    cancel_policy: CancelPolicy = CancelPolicy.RETAIN
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0, description="Seconds before the first retry")
    retry_backoff: float = Field(default=2.0, ge=1)
    max_retry_delay: float = Field(default=30.0, ge=0)


class ValidationSettings(BaseModel):
    """Soft limits used by the validator."""

    word_count_tolerance: int = Field(default=50, ge=0)
    reading_time_tolerance: int = Field(default=2, ge=0, description="Minutes")
    min_draft_words: int = 50
    max_title_length: int = 200
    low_relevance_threshold: float = 5.0
    teaching_ready_min_confidence: float = 0.7
    signal_score_tolerance: float = 0.1


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Path | None = None
    rich: bool = True


class FlcmConfig(BaseSettings):
    """Root configuration for FLCM."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="FLCM_",
        env_nested_delimiter="__",
    )

    @classmethod
    def for_root(cls, root: Path) -> "FlcmConfig":
        """Defaults (plus environment overrides) rooted at ``root``."""
        config = cls()
        config.storage.root = root
        return config
