from __future__ import annotations

import os

# Keep imports of the app module from touching the on-disk cache or real credentials.
os.environ["CACHE_URL"] = "memory://"
os.environ["API_SPORTS_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["API_KEY"] = ""
