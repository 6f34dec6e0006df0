import argparse
import sys
from pathlib import Path

import uvicorn

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from quote_engine.config.settings import get_settings


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the Quote Engine API")
    parser.add_argument("--host", default=settings.api_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")
    args = parser.parse_args()

    print(f"Starting Quote Engine API on {args.host}:{args.port}")
    print(f"Catalogs: {settings.data_dir}")
    uvicorn.run(
        "quote_engine.api.main:app",
        host=args.host,
        port=args.port,
        reload=not args.no_reload,
        reload_dirs=[str(src_path)],
    )


if __name__ == "__main__":
    main()
