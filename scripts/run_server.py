#!/usr/bin/env python3
"""
Start the SiteMind agent API.
Checks the configuration and the Ollama connection before serving.
"""

import argparse
import sys

import uvicorn

from sitemind.agents.ollama_agent import check_ollama_health
from sitemind.core.config import API_HOST, API_PORT, LLM_PROVIDER, OLLAMA_HOST, validate_agent_config
from sitemind.core.db import init_db
from sitemind.util.logging import logger


def main():
    parser = argparse.ArgumentParser(description="Serve the SiteMind agent API")
    parser.add_argument("--host", default=API_HOST, help=f"Bind address (default: {API_HOST})")
    parser.add_argument("--port", type=int, default=API_PORT, help=f"Port (default: {API_PORT})")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--skip-llm-check", action="store_true",
                        help="Start even if Ollama is unreachable")
    args = parser.parse_args()

    issues = validate_agent_config()
    if issues:
        for issue in issues:
            print(f"❌ {issue}")
        sys.exit(1)

    if LLM_PROVIDER == "ollama" and not args.skip_llm_check:
        if not check_ollama_health(OLLAMA_HOST):
            print(f"❌ Ollama is not reachable at {OLLAMA_HOST}")
            print("   Start it with 'ollama serve' or set LLM_PROVIDER=mock")
            sys.exit(1)
        print(f"✅ Ollama reachable at {OLLAMA_HOST}")

    init_db()
    logger.info(f"Starting agent API on {args.host}:{args.port} (provider={LLM_PROVIDER})")
    uvicorn.run("sitemind.api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
