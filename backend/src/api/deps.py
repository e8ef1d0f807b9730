# src/api/deps.py
from typing import Optional

from service.generation import GenerationService

_generation_service: Optional[GenerationService] = None


# process-wide orchestrator; the app lifespan starts/stops it
def get_generation_service() -> GenerationService:
    global _generation_service
    if _generation_service is None:
        _generation_service = GenerationService()
    return _generation_service
