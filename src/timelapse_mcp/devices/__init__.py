"""Logical device layer - camera resource and time sources."""

from timelapse_mcp.devices.camera import CameraResourceHandle
from timelapse_mcp.devices.clock import (
    Clock,
    Scheduler,
    SystemClock,
    ThreadingScheduler,
    TimerHandle,
)

__all__ = [
    # Camera
    "CameraResourceHandle",
    # Time
    "Clock",
    "SystemClock",
    "Scheduler",
    "ThreadingScheduler",
    "TimerHandle",
]
