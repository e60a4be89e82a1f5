"""Smart coaster core: weighing, settings and log storage, real-time clock and LED control."""

__version__ = "0.1.2"