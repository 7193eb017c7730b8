"""Run the analyzer API with uvicorn (`python main.py`)."""
import os
import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        # Sessions and the detector live in process memory
        workers=1
    )
