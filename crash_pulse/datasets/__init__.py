"""
Crash Pulse - Datasets

Source-specific stages built on the shared base classes:
    - collisions: NYC motor vehicle collisions
    - acs: American Community Survey tract estimates
"""
