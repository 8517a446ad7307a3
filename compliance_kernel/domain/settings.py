"""
EngineSettings -- tunables consumed by engines, services, and passes.

Built from the active configuration by ``compliance_config.bridges``; the
kernel never reads configuration files itself.  Defaults match the
shipped ``engine_params.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineSettings:
    due_soon_threshold_hours: int = 24
    notification_offsets: tuple[int, ...] = (7, 3, 1, 0)
    escalation_days: int = 7
    admin_escalation_days: int = 15
    max_adjustment_iterations: int = 30
    fiscal_year_start_month: int = 4
    generation_horizon_days: int = 90
    default_currency: str = "INR"
    default_timezone: str = "Asia/Kolkata"
    ignore_optional_holidays: bool = True
    max_workers: int = 4
    max_pass_retries: int = 2

    def __post_init__(self) -> None:
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ValueError(
                f"fiscal_year_start_month must be 1-12, got {self.fiscal_year_start_month}"
            )
        if self.max_adjustment_iterations < 1:
            raise ValueError("max_adjustment_iterations must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be positive")
        if any(offset < 0 for offset in self.notification_offsets):
            raise ValueError("notification_offsets must be non-negative")
