#!/usr/bin/env python3
"""
caseflow REST API
=================

A FastAPI-based REST API for deploying BPMN processes and running cases.

Usage:
    python main.py                    # Run on default port 8000
    python main.py --port 8080        # Run on port 8080
    python main.py --reload           # Auto-reload on changes

API Documentation:
    http://localhost:8000/docs        # Swagger UI
    http://localhost:8000/redoc       # ReDoc

Endpoints:
    GET    /health                                        # Health check

    POST   /api/v1/definitions                            # Deploy definition
    GET    /api/v1/definitions                            # List definitions
    GET    /api/v1/definitions/{key}                      # Definition summary

    POST   /api/v1/cases                                  # Start case
    GET    /api/v1/cases/{id}                             # Case status
    GET    /api/v1/cases/{id}/state                       # Interpreter state
    GET    /api/v1/cases/{id}/user-tasks/{taskId}         # User task form
    POST   /api/v1/cases/{id}/user-tasks/{taskId}/complete
    POST   /api/v1/cases/{id}/signals                     # Deliver signal
    POST   /api/v1/cases/{id}/messages                    # Deliver message
    POST   /api/v1/cases/{id}/terminate                   # Terminate case
"""

import logging
import argparse

import uvicorn

from caseflow.config import Settings


def main():
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="caseflow REST API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    log_level = "DEBUG" if args.debug else settings.log_level

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 60)
    print("caseflow API")
    print("=" * 60)
    print()
    print(f"API Documentation: http://{args.host}:{args.port}/docs")
    print(f"Health Check: http://{args.host}:{args.port}/health")
    print(f"Definition store: {settings.storage_path}")
    print()
    print("=" * 60)

    # Cases live in process memory, so a single worker serves them all
    uvicorn.run(
        "caseflow.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
