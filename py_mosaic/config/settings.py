"""Engine settings pulled from environment variables."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Defaults for cartogram runs. Every field can be overridden with a MOSAIC_ variable."""

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["json", "console"] = Field(default="json", description="Log renderer")

    # Grid
    grid_type: Literal["hexagonal", "square"] = Field(
        default="hexagonal", description="Lattice used for new cartograms"
    )
    guiding_shape_samples: int = Field(
        default=5, ge=0, description="Offsets tried per axis when fitting guiding shapes"
    )

    # Heuristic
    max_no_improve_iterations: int = Field(
        default=5000, ge=0, description="Iterations without improvement before the search stops"
    )
    max_repair_passes: int = Field(
        default=1000, ge=1, description="Upper bound on hole and alley repair passes"
    )
    polish_max_iterations: int = Field(default=40, ge=0, description="Flow rounds in the polisher")

    # Multi-resolution scaling
    scaling_threshold: float = Field(
        default=10.0, gt=0, description="Average tiles per region in the coarsest round"
    )
    scaling_factor: float = Field(default=1.4142, gt=1, description="Unit size ratio between rounds")

    # Checkpoints
    checkpoint_dir: Path = Field(default=Path("."), description="Directory for coordinate checkpoints")
    checkpoint_enabled: bool = Field(default=False, description="Write coordinates after each search")

    # Layout
    layout_seed: str = Field(default="mosaic", description="Seed of the layout generator")

    class Config:
        env_prefix = "MOSAIC_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
