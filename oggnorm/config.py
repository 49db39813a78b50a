"""oggnorm global configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Loudness
    target_loudness: float = -24.0  # LUFS, returned when nothing measurable

    # Decoding
    packet_frames: int = 4096  # frames pulled per step()

    # Splitting
    instrumental_channels: tuple[int, int] = (0, 1)
    vocal_channels: tuple[int, int] = (2, 3)

    model_config = {"env_prefix": "OGGNORM_"}


settings = Settings()
