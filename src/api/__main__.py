"""Run the API with uvicorn: python -m api."""
import argparse
import logging

import uvicorn


def main() -> None:
    """Parse arguments and serve the application."""
    parser = argparse.ArgumentParser(description="Serve the bookmarks API")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run("api.main:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
