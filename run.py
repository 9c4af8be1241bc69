#!/usr/bin/env python3
"""
Watch Party Server Runner

Simple script to start the Watch Party server with proper configuration.
"""

import sys

import uvicorn

from watchparty.config import DEBUG, HOST, PORT

if __name__ == "__main__":
    print("Starting Watch Party Server...")
    print(f"Server will be available at: http://localhost:{PORT}")
    print("Press Ctrl+C to stop the server")
    print("-" * 50)

    try:
        uvicorn.run(
            "watchparty.main:socket_app",
            host=HOST,
            port=PORT,
            reload=DEBUG,
            log_level="debug" if DEBUG else "info",
            access_log=True
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped.")
    except Exception as e:
        print(f" Error starting server: {e}")
        sys.exit(1)
