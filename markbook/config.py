"""
Configuration centrale de l'application via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base de données (SQLite par défaut sur la tablette / en développement)
    DATABASE_URL: str = "sqlite:///./markbook.db"

    # Enseignant connecté (l'authentification est gérée hors de ce service)
    TEACHER_ID: str = "default-teacher"

    # Stockage des copies scannées
    STORAGE_ROOT: str = "./storage"
    ASSESSMENTS_PREFIX: str = "assessments"
    STORAGE_CHUNK_SIZE: int = 256 * 1024
    MAX_DOWNLOAD_BYTES: int = 10 * 1024 * 1024

    # Validation et compression des images
    MAX_INPUT_IMAGE_BYTES: int = 25 * 1024 * 1024
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
    MAX_IMAGE_DIMENSION: int = 4096
    JPEG_INITIAL_QUALITY: int = 80
    JPEG_MIN_QUALITY: int = 10
    JPEG_QUALITY_STEP: int = 10

    # Détection QR
    DETECTION_TIMEOUT_SECONDS: float = 10.0

    # Progression du téléversement : bande occupée par l'écriture du fichier
    STORAGE_PROGRESS_START: float = 0.3
    STORAGE_PROGRESS_END: float = 0.8
    UPLOAD_RESET_DELAY_SECONDS: float = 1.0

    # Statistiques
    RECENT_ACTIVITY_DAYS: int = 30

    # Environnement
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
