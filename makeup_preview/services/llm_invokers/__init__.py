from .vision_service import VisionService, VisionUnavailableError, extract_json_object

__all__ = ["VisionService", "VisionUnavailableError", "extract_json_object"]
