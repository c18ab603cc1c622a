"""Entry point: `uvicorn main:app` from the project root, or `python main.py`."""
import uvicorn

from app.main import app  # noqa: F401

if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
