"""
SolarCRM Engine - API Versioning Service

FastAPI service that negotiates API versions, reshapes responses for older
clients, and migrates stored payloads forward between response contracts.
"""

__version__ = "0.1.0"
