"""
SolarCRM Engine - Core Package

Logging, error handling and authentication shared by every router.
"""
