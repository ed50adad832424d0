"""Entry point for the persona knowledge base server."""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Persona knowledge base server")
    parser.add_argument(
        "--store",
        choices=["postgres", "memory"],
        default=None,
        help="Knowledge store backend (default: postgres). Overrides KNOWLEDGE_STORE env var.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    args = parser.parse_args()

    if args.store:
        os.environ["KNOWLEDGE_STORE"] = args.store

    # Imported after the env override so settings pick it up
    from persona_kb.server import app

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
