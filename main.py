#!/usr/bin/env python3
"""
notesmaker

A FastAPI application that turns a board syllabus chapter into study notes:
syllabus lookup, resource scraping, chunking and embedding, retrieval,
templated or LLM generation, quality checks and PDF compilation.

To start the server:
    python main.py
"""

import sys
from pathlib import Path

# add src to python path so the notesmaker package imports without installing
sys.path.insert(0, str(Path(__file__).parent / "src"))

# start the fastapi server when this file is run
if __name__ == "__main__":
    import uvicorn
    # run the api app on port 8000 with auto-reload for development
    uvicorn.run("notesmaker.api:app", host="0.0.0.0", port=8000, reload=True)
