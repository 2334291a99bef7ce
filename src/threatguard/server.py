"""Server entry point for the ThreatGuard conversation API."""

import os

import uvicorn


def main():
    """Run the FastAPI server."""
    uvicorn.run(
        "threatguard.api:app",
        host=os.environ.get("THREATGUARD_HOST", "127.0.0.1"),
        port=int(os.environ.get("THREATGUARD_PORT", "8080")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
