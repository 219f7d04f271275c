# Automated Grading Assistant - Backend Server
import os
import sys

# Ensure the backend directory is in Python path for proper imports
backend_dir = os.path.dirname(os.path.abspath(__file__))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

# This allows uvicorn to find the app when running: uvicorn main:app
from app.main import app  # noqa: E402

# For local development - run the server when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
