"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio / framing
    sample_rate: int = 44100
    fft_size: int = 2048
    hop_length: int = 512
    smoothing_time_constant: float = 0.2
    min_db: float = -90.0
    max_db: float = -10.0

    # Onset detection (byte-scale magnitudes, 0-255 per bin)
    base_threshold: float = 30.0
    min_threshold: float = 1.0
    threshold_margin: float = 20.0
    noise_floor_decay: float = 0.99
    min_inter_tap_interval_ms: float = 50.0

    # Calibration
    calibration_duration_ms: float = 5000.0
    calibration_floor: float = 30.0

    # Beat tracking
    tolerance_ms: float = 50.0
    perfect_window_ms: float = 10.0
    tap_history_length: int = 100
    default_beat_count: int = 32  # 8 bars of 4/4

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50
    log_level: str = "info"

    model_config = {"env_prefix": "TAPMETER_"}


settings = Settings()
