"""lorechat dev launcher. Starts the API server in watch mode."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def main():
    parser = argparse.ArgumentParser(description="lorechat dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean and create demo character data")
    args = parser.parse_args()

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Handle --demo: init storage and populate, then continue to dev server
    if args.demo or args.data_dir:
        from lorechat import storage
        data_dir = args.data_dir or Path("data")
        storage.init_storage(data_dir)
        if args.demo:
            from lorechat.demo import create_demo_data
            create_demo_data()
            print(f"Demo data written to {data_dir.resolve()}")

    # The reloader imports the app fresh, so hand it the data dir via env
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting lorechat on http://localhost:{PORT} ...")
    uvicorn.run(
        "lorechat.app:app",
        host=HOST,
        port=PORT,
        reload=True,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
