"""Robust radio positioning.

This package estimates the position of a device from readings of located
radio sources (Wi-Fi access points, beacons) while rejecting outliers:
- rf: radio source, reading and fingerprint types, path-loss models
- estimators: direct and robust (RANSAC, MSAC, LMedS, PROSAC, PROMedS) lateration
- position: robust, sequential (RSSI then ranging) and direct position estimators
- sim: synthetic scenarios
- eval: metrics and plots
"""

__version__ = "0.1.0"
