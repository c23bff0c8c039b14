"""
Application Configuration
Loads environment variables and exposes the settings used by the billing code
"""

import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env file
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


class Config:
    """Process-wide configuration read once from the environment"""

    # Database
    DATABASE_PATH = os.environ.get('DAIRY_DB_PATH') or os.path.join(basedir, 'dairy_management.db')

    # Delivery model: 1 entry per day, or a morning and an evening entry
    ENTRIES_PER_DAY = int(os.environ.get('ENTRIES_PER_DAY', 2))

    # Whether undelivered entries count towards bills and reports
    INCLUDE_UNDELIVERED = os.environ.get('INCLUDE_UNDELIVERED', 'False').lower() == 'true'

    # Business
    BUSINESS_NAME = os.environ.get('BUSINESS_NAME', 'DairyFlow Farm')
    CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', 'Rs.')

    # Exports (bill PDFs and Excel files); empty means the system temp dir
    EXPORT_FOLDER = os.environ.get('EXPORT_FOLDER', '')

    # Unicode TTF for invoices; without it PDFs use the core Latin-1 font
    PDF_FONT_PATH = os.environ.get('PDF_FONT_PATH', '')
    PDF_FONT_BOLD_PATH = os.environ.get('PDF_FONT_BOLD_PATH', '')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()


def setup_logging(level=None):
    """Configure root logging for the app process."""
    logging.basicConfig(
        level=getattr(logging, level or Config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
