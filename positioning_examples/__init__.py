"""
Robust radio positioning examples.

Examples:
    - Robust positioning with NLOS outliers, comparing all robust methods
    - Sequential RSSI then ranging positioning
"""
