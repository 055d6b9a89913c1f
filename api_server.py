#!/usr/bin/env python
"""
FastAPI server for EduSocial
"""
import os
import sys

# Add src to Python path (relative to api_server.py)
src_path = os.path.join(os.path.dirname(__file__), "src")
if os.path.exists(src_path) and src_path not in sys.path:
    sys.path.insert(0, src_path)

from edusocial.app import create_app  # noqa: E402
from edusocial.config import config  # noqa: E402

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
