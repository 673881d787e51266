#!/usr/bin/env python3
"""
Lending Service Entry Point

Starts the FastAPI server with the lending system.
"""

import sys

import uvicorn

from core_lending.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("📚 Starting Lending Service...")
    print(f"🗄️  Storage: {'SQLite ' + config.database_path if config.use_sqlite else 'in-memory'}")
    print(f"🔁 Conditional writes retried up to {config.checkout_retry_attempts} times")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📖 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(
            "core_lending.api:create_app",
            factory=True,
            host=config.api_host,
            port=config.api_port,
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Lending Service...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
