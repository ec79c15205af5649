"""Tuning parameters for a multiplexed session."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Config:
    """Session settings; durations are in seconds."""

    keep_alive_interval: float = 10.0
    keep_alive_timeout: float = 120.0
    max_frame_size: int = 4096
    max_receive_buffer: int = 4194304
    read_timeout: float = 120.0
    write_timeout: float = 120.0


def default_config() -> Config:
    """Return a configuration with the default values."""
    return Config()


def verify_config(config: Config) -> Config:
    """Check the configuration, raising ValueError if it is not sane."""
    if config.keep_alive_interval == 0:
        raise ValueError("keep-alive interval must be positive")
    if config.keep_alive_timeout < config.keep_alive_interval:
        raise ValueError("keep-alive timeout must be larger than keep-alive interval")
    if config.max_frame_size <= 0:
        raise ValueError("max frame size must be positive")
    if config.max_frame_size > 65535:
        raise ValueError("max frame size must not be larger than 65535")
    if config.max_receive_buffer <= 0:
        raise ValueError("max receive buffer must be positive")
    return config