"""Centralized configuration for the storefront app."""

import os

from catalog_mirror.config import BRAND_KEY, DB_PATH as CATALOG_DB_PATH

# Flask app settings (allow env overrides; default debug off for safety)
# Hosting platforms set PORT dynamically; fall back to FLASK_PORT or 5000 for local.
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("FLASK_PORT", os.getenv("PORT", "5000")))
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"

# Content store shared with the batch CLI
DB_PATH = os.getenv("STOREFRONT_DB_PATH", CATALOG_DB_PATH)
DEFAULT_BRAND = BRAND_KEY

# Resolved catalog numbers create minimal product records unless disabled
ALLOW_STORE_WRITES = os.getenv("ALLOW_STORE_WRITES", "True").lower() == "true"
