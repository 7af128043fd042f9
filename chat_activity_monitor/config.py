"""
Configuration Module

This module contains configuration settings for the application.
"""
import os
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv

# Base directory - one level up from this file
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env file from BASE_DIR (adjust path if your .env is elsewhere)
load_dotenv(BASE_DIR / ".env")

# Durable snapshot of the event store
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
DATA_DIR.mkdir(exist_ok=True, parents=True)
STORE_PATH = Path(os.getenv("STORE_PATH", DATA_DIR / "bot_data.json"))

# Persistence settings
SAVE_DELAY_SECONDS = float(os.getenv("SAVE_DELAY_SECONDS", "5"))

# Upstream (Discord REST) settings
DISCORD_API_URL = os.getenv("DISCORD_API_URL", "https://discord.com/api/v10")
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN", "")
TARGET_GUILD_ID = os.getenv("TARGET_GUILD_ID", "")
MOD_ROLE_ID = os.getenv("MOD_ROLE_ID", "")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

# Backfill settings
SCAN_CONCURRENCY = int(os.getenv("SCAN_CONCURRENCY", "2"))
SCAN_BATCH_SIZE = int(os.getenv("SCAN_BATCH_SIZE", "100"))  # 100 is the max page size upstream
SCAN_MAX_PER_CHANNEL = int(os.getenv("SCAN_MAX_PER_CHANNEL", "3000"))
SCAN_BUFFER_SIZE = int(os.getenv("SCAN_BUFFER_SIZE", "500"))
SCAN_PAGE_DELAY_SECONDS = float(os.getenv("SCAN_PAGE_DELAY_SECONDS", "0.3"))
SCAN_WAVE_DELAY_SECONDS = float(os.getenv("SCAN_WAVE_DELAY_SECONDS", "1"))
SKIP_INITIAL_SCAN = os.getenv("SKIP_INITIAL_SCAN", "false").lower() == "true"

# Reporting settings
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "UTC")
MAX_REPORT_LENGTH = int(os.getenv("MAX_REPORT_LENGTH", "2000"))
MOD_ROLE_NAME_HINTS = ["mod", "moderator", "admin"]

# API settings
API_PREFIX = "/api"

# Dashboard settings
DASHBOARD_PREFIX = "/dashboard"
DASHBOARD_API_BASE = os.getenv("DASHBOARD_API_BASE", "http://localhost:8000/api")
