import argparse
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

load_dotenv(ROOT / ".env")

from exam_extractor.app import create_app
from exam_extractor.config import ExtractorConfig
from exam_extractor.logging_config import setup_logging
import uvicorn


def run_server(host: str, port: int) -> None:
    setup_logging()
    config = ExtractorConfig.from_env()
    app = create_app(config)
    uvicorn.run(app, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="Exam extractor API server.")
    parser.add_argument("--host", default="0.0.0.0", help="Server host")
    parser.add_argument("--port", type=int, default=8001, help="Server port")
    args = parser.parse_args()
    run_server(args.host, args.port)


if __name__ == "__main__":
    main()
