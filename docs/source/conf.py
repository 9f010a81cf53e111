import os
import sys

sys.path.insert(0, os.path.abspath("../.."))

# Importing the service modules builds their apps; keep that away from real databases and brokers.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("EVENTS_ENABLED", "false")

project = "Open Studio"
author = "Open Studio maintainers"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

autodoc_member_order = "bysource"
autodoc_default_options = {"members": True, "undoc-members": False}

templates_path = ["_templates"]
exclude_patterns: list[str] = []

html_theme = "sphinx_rtd_theme"
html_title = "Open Studio booking services"
