"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="MEASURE_",
    )

    # Application
    app_name: str = "Measure Compiler"
    debug: bool = False
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # SQL generation defaults
    default_population_id: str = "${POPULATION_ID}"
    default_sql_dialect: str = "synapse"
    base_ontology_context: str = "HEALTHE INTENT Demographics"
    include_sql_comments: bool = True

    # Measurement period used when neither the measure nor the request sets one
    default_measurement_period_start: str = "2025-01-01"
    default_measurement_period_end: str = "2025-12-31"

    # CQL generation
    fhir_version: str = "4.0.1"
    terminology_service_url: str = "http://cts.nlm.nih.gov/fhir/ValueSet/"
    narrative_max_length: int = 200

    # Overrides
    override_note_min_length: int = 10


settings = Settings()
