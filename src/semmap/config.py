"""Configuration management using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Layout engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Neighbor graph
    umap_n_neighbors: int = 15
    umap_sigma_iterations: int = 64

    # UMAP optimizer
    umap_min_dist: float = 0.1
    umap_spread: float = 1.0
    umap_epochs: int = 200
    umap_attraction_strength: float = Field(
        default=1.0,
        description="Multiplier on edge attraction, independent of spread and repulsion"
    )
    umap_repulsion_strength: float = Field(
        default=1.0,
        description="Multiplier on negative-sample repulsion, independent of attraction"
    )
    umap_min_attractive_scale: float = Field(
        default=1.0,
        description="Exclusion radius below which attraction fades is min_dist * this"
    )
    umap_negative_sample_rate: int = 5
    umap_learning_rate: float = 1.0
    umap_front_loaded_fraction: float = Field(
        default=0.2,
        description="Fraction of epochs that keep the full learning rate"
    )
    umap_steps_per_frame: int = 8
    umap_render_interval: int = 10
    umap_target_radius: float = 500.0
    umap_seed: int = 42

    # Community detection
    community_resolutions: list[float] = Field(
        default=[0.1, 0.5, 1.5, 6.0, 10.0, 15.0, 25.0, 30.0],
        description="Resolution per semantic-zoom level, level 0 coarsest"
    )
    community_resolution: float = 1.0
    community_similarity_threshold: float = 0.3
    community_seed: int = 42
    community_min_resolution: float = 0.01

    # Focus / lens
    focus_max_hops: int = 2
    focus_compression_strength: float = 1.0

    # Collision
    collision_radius: float = 20.0
    collision_hover_scale: float = 2.0
    collision_strength: float = 0.8
    collision_cooling_factor: float = Field(
        default=0.85,
        description="Collision radius multiplier applied once the layout starts cooling"
    )

    # Parent tether
    tether_base_multiplier: float = 2.5
    tether_spread_factor: float = 1.5
    tether_spring_strength: float = 0.1
    tether_parent_radius: float = 20.0
    tether_child_radius: float = 8.0

    # Viewport edge pulling
    pull_max_nodes: int = 20
    pull_max_content_nodes: int = 20
    pull_similarity_threshold: float = 0.0
    pull_line_px: float = 25.0
    pull_focus_line_px: float = 80.0
    pull_overscan_px: float = 40.0

    # Interpolation
    interpolation_duration_ms: float = 400.0

    # Convergence and auto-fit
    convergence_window: int = 10
    convergence_threshold: float = 2.0
    convergence_sustain_ticks: int = 20
    convergence_min_ticks: int = 40
    convergence_max_velocity: float = 50.0
    autofit_initial_tick: int = 100
    autofit_after_cooling: bool = True

    # Snapshot cache
    layout_cache_size: int = 8


def get_dev_settings() -> Settings:
    """Get development environment settings."""
    return Settings(
        umap_epochs=200,
        umap_steps_per_frame=8,
    )


def get_test_settings() -> Settings:
    """Get test environment settings.

    Small epoch budget and frequent progress events keep unit tests fast.
    """
    return Settings(
        umap_epochs=50,
        umap_steps_per_frame=10,
        umap_render_interval=5,
        convergence_window=3,
        convergence_sustain_ticks=3,
        convergence_min_ticks=5,
        autofit_initial_tick=5,
    )


# Global settings instance
settings = Settings()
