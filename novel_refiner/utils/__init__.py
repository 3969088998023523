from .logger import setup_logger
from .progress import RichProgress, notify, scaled
from .text import detect_language, parse_json_response, truncate_text

__all__ = [
    "setup_logger",
    "RichProgress",
    "notify",
    "scaled",
    "detect_language",
    "parse_json_response",
    "truncate_text",
]
