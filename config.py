"""
Configuration for the storybook edit pipeline.
Values come from the environment; a .env file next to this module is loaded first.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent / '.env'
if env_path.exists():
    load_dotenv(env_path)

# Storage layout:
#   OUTPUT_DIR/books/<id>/               shared (global) books
#   OUTPUT_DIR/users/<uid>/books/<id>/   per-user books
# Each book folder holds book.json, the generated PNGs, edited/ and book-<id>.pdf
_default_output_dir = os.path.join(os.path.dirname(__file__), "output")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", _default_output_dir)
USERS_DIR = os.getenv("USERS_DIR", os.path.join(OUTPUT_DIR, "users"))
GLOBAL_BOOKS_DIR = os.getenv("GLOBAL_BOOKS_DIR", os.path.join(OUTPUT_DIR, "books"))

# Public URL prefix that maps onto OUTPUT_DIR
PUBLIC_OUTPUT_PREFIX = os.getenv("PUBLIC_OUTPUT_PREFIX", "/output")

# Per-request edit quotas
MAX_TEXT_EDITS = int(os.getenv("MAX_TEXT_EDITS", "10"))
MAX_IMAGE_EDITS = int(os.getenv("MAX_IMAGE_EDITS", "5"))

# Overlay card settings
OVERLAY_FONT_PATH = os.getenv("OVERLAY_FONT_PATH", "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf")
DEFAULT_IMAGE_SIZE = (1020, 797)  # width, height used when an image reports no size
OVERLAY_MAX_LINES = 5

# Remote replacement images (image edits fulfilled elsewhere)
REMOTE_IMAGE_TIMEOUT = int(os.getenv("REMOTE_IMAGE_TIMEOUT", "20"))

# Header carrying the authenticated user id, set by the gateway in front of the API
USER_HEADER = os.getenv("USER_HEADER", "X-User-Id")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
