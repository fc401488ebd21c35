# storeinsight/config.py

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent
CONFIG_DIR = PACKAGE_DIR / "configs"

# --------------------------------------------------------------------
# LLM header suggestion
# --------------------------------------------------------------------

# LLM_PROVIDER=openai (default), groq or ollama
LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "openai").lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
GROQ_API_KEY = os.environ.get("GROQ_API_KEY")
GROQ_MODEL = os.environ.get("GROQ_MODEL", "llama3-8b-8192")
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "mistral:7b-instruct")
LLM_TIMEOUT = float(os.environ.get("LLM_TIMEOUT", "60"))

# --------------------------------------------------------------------
# Templates
# --------------------------------------------------------------------

# Preferred proforma template first; the v3 file is kept for older deployments.
PROFORMA_TEMPLATE_CANDIDATES = [
    p
    for p in (
        os.environ.get("PROFORMA_TEMPLATE_PATH"),
        os.path.join("templates", "STORE_Proforma_v4.xlsx"),
        os.path.join("templates", "STORE_Proforma_v3.xlsx"),
    )
    if p
]
OWNER_REPORT_TEMPLATE_PATH = os.environ.get(
    "OWNER_REPORT_TEMPLATE_PATH", os.path.join("templates", "Owner_Report_Template.pptx")
)

# --------------------------------------------------------------------
# Mapping / web
# --------------------------------------------------------------------

AUTO_MAP_THRESHOLD = float(os.environ.get("AUTO_MAP_THRESHOLD", "0.88"))
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "50"))


def first_existing_template(candidates=None):
    """Return the first template path that exists on disk, or None."""
    for candidate in candidates if candidates is not None else PROFORMA_TEMPLATE_CANDIDATES:
        if candidate and Path(candidate).is_file():
            return Path(candidate)
    return None
