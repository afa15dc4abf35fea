"""Application configuration."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "ErgCoach"
    debug: bool = False
    api_prefix: str = "/api"
    cors_origins: List[str] = []  # Browser clients allowed to call the API, as a JSON list

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Report storage
    report_dir: str = "./reports"
    min_report_duration_ms: int = 15_000
    max_fault_fragments_per_checker: int = 10

    # Sample retention
    point_shelf_life_ms: int = 5_000  # Raw detections and extremum samples
    frame_shelf_life_ms: int = 10_000  # Frames kept for fault illustrations

    # Extremum tracking
    extremum_debounce_ms: int = 500  # Local run must stop extending this long
    extremum_history_size: int = 7
    stale_candidate_ms: int = 5_000
    forced_adoption_frames: int = 100

    # Phase detection (catch/finish percentage)
    catch_zone_pct: int = 20
    finish_zone_pct: int = 70
    unnoticed_pause_ms: int = 9_000

    # Hand raised above shoulder = pause / reset signal
    hand_raise_margin_px: int = 10
    pause_hand_frames: int = 15
    reset_hand_frames: int = 150

    # Limb lengths
    limb_average_max_size: int = 30
    limb_average_sample_size: int = 10
    forearm_correction_ratio: float = 0.2
    default_wrist_height: int = 115
    deviation_min_strokes: int = 5

    # Fixed ankle (ankle detection is unreliable on an erg)
    fixed_ankle_x: int = 82
    fixed_ankle_y: int = 167

    # Stroke plausibility
    min_stroke_rate: int = 5
    max_stroke_rate: int = 50
    min_catch_body_angle: float = 25.0
    max_catch_body_angle: float = 135.0
    min_catch_shin_angle: float = 25.0
    max_catch_shin_angle: float = 180.0
    min_finish_body_angle: float = 25.0
    max_finish_body_angle: float = 150.0
    max_time_since_catch_ms: int = 5_000
    min_wrist_travel_px: int = 50
    invalid_strokes_to_stop: int = 3
    valid_strokes_to_start: int = 2
    session_start_stroke_rate: int = 15

    # Coach escalation
    coach_event_debounce_ms: int = 500
    bad_strokes_before_message: int = 3
    reminder_interval_ms: int = 30_000
    ignore_cooldown_ms: int = 60_000

    # Fault checker thresholds
    catch_angle_max: float = 80.0
    layback_min_angle: float = 100.0
    layback_max_angle: float = 139.0
    layback_ideal_angle: float = 110.0
    shin_angle_max: float = 110.0
    max_slide_ratio: float = 1.0
    early_drive_min_delta: float = -5.0
    early_drive_max_delta: float = 17.0
    lunging_min_delta: float = -10.0
    lunging_max_delta: float = 15.0
    hand_level_max_deviation: float = 5.0
    hand_level_bottom_y: float = 130.0
    hands_out_knee_delta_body_ratio: float = 0.15
    max_leg_deviation_pct: int = 15  # Above this the leg detection is unreliable

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
