"""
Global Configuration Module

This module provides a centralized configuration storage for the differencing
and spectral processing settings that can be accessed by all functions
throughout the application.

Processing functions take an explicit settings object; when none is given they
use the current global snapshot, so a call never observes a change made while it
runs.
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields, replace
from enum import Enum


class ReferencePolicy(Enum):
    """How the reference transmitter of a baseline/epoch is chosen."""
    HIGHEST_ELEVATION = "highest_elevation"
    HIGHEST_SIGNAL_STRENGTH = "highest_signal_strength"


class WindowFunction(Enum):
    """Weighting applied when averaging absorbance across a line window."""
    GAUSSIAN = "gaussian"
    LORENTZIAN = "lorentzian"
    UNIFORM = "uniform"


@dataclass(frozen=True)
class DifferencingSettings:
    """
    Settings for double/triple differencing.
    """
    elevation_mask_deg: float = 10.0
    reference_policy: ReferencePolicy = ReferencePolicy.HIGHEST_ELEVATION
    fixed_reference: Optional[str] = None   # transmitter id to prefer as reference
    epoch_resolution: float = 1e-3          # seconds, timestamps are snapped to this grid
    cycle_slip_threshold_m: float = 0.05


@dataclass(frozen=True)
class SpectralSettings:
    """
    Settings for Beer-Lambert concentration estimation.
    """
    window: WindowFunction = WindowFunction.GAUSSIAN


@dataclass
class GlobalConfig:
    """
    Global configuration container for the entire application.
    """
    differencing: DifferencingSettings = field(default_factory=DifferencingSettings)
    spectral: SpectralSettings = field(default_factory=SpectralSettings)

    def get_settings(self, section: str):
        """
        Get settings for the specified section.

        Args:
            section: Either 'differencing' or 'spectral'

        Returns:
            The frozen settings object of that section
        """
        if section.lower() == 'differencing':
            return self.differencing
        elif section.lower() == 'spectral':
            return self.spectral
        else:
            raise ValueError(f"Invalid settings section: {section}. Use 'differencing' or 'spectral'")

    def update_settings(self, section: str, settings: Dict[str, Any]) -> None:
        """
        Update settings for the specified section.

        Enum fields accept either the enum member or its string value.

        Args:
            section: Either 'differencing' or 'spectral'
            settings: Dictionary containing the settings to update
        """
        current = self.get_settings(section)
        known = {f.name: f for f in fields(current)}
        values = {}
        for key, value in settings.items():
            if key not in known:
                raise ValueError(f"Unknown {section} setting: {key}")
            default = getattr(current, key)
            if isinstance(default, Enum) and not isinstance(value, Enum):
                value = type(default)(value)
            values[key] = value
        setattr(self, section.lower(), replace(current, **values))

    def reset(self) -> None:
        """Restore default settings."""
        self.differencing = DifferencingSettings()
        self.spectral = SpectralSettings()


# Create a singleton instance of GlobalConfig that can be imported and used globally
global_config = GlobalConfig()


def get_global_config() -> GlobalConfig:
    """
    Get the global configuration instance.

    Returns:
        GlobalConfig instance
    """
    return global_config


def get_differencing_settings() -> DifferencingSettings:
    """Convenience function to get differencing settings."""
    return global_config.get_settings('differencing')


def update_differencing_settings(settings: Dict[str, Any]) -> None:
    """Convenience function to update differencing settings."""
    global_config.update_settings('differencing', settings)


def get_spectral_settings() -> SpectralSettings:
    """Convenience function to get spectral settings."""
    return global_config.get_settings('spectral')


def update_spectral_settings(settings: Dict[str, Any]) -> None:
    """Convenience function to update spectral settings."""
    global_config.update_settings('spectral', settings)
