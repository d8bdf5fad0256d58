"""DnDBot command line: run the web server or generate one adventure offline."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

logger = logging.getLogger("dndbot")


def serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run(
        "backend.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


async def _generate(args: argparse.Namespace) -> int:
    from dndbot.config import load_settings
    from dndbot.pipeline import Pipeline, StageError
    from dndbot.render import save_to_files, zip_output_directory
    from dndbot.storage import Storage

    settings = load_settings()
    if args.prompt:
        request = args.prompt
    elif args.prompt_file.is_file():
        request = args.prompt_file.read_text()
    else:
        logger.error("No prompt given and %s does not exist", args.prompt_file)
        return 1

    setting = args.setting.read_text() if args.setting else settings.default_setting()
    style = args.style.read_text() if args.style else settings.default_style()

    out_dir = settings.output_dir / args.dirname
    pipeline = Pipeline(
        settings.make_client(),
        Storage(settings.data_dir),
        max_continuations=settings.max_continuations,
        timeout=settings.generation_timeout,
    )
    try:
        adventure = await pipeline.run(args.dirname, request, setting=setting, style=style)
    except StageError as e:
        logger.error("Generation %s", e)
        return 1

    save_to_files(adventure, out_dir)
    archive = zip_output_directory(out_dir)
    print(f"Adventure written to {out_dir} ({archive})")
    return 0


def main():
    parser = argparse.ArgumentParser(description="DnDBot adventure generator")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"),
                        help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Run the web server (default)")
    p_serve.add_argument("--host", default=HOST)
    p_serve.add_argument("--port", type=int, default=PORT)
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    p_gen = sub.add_parser("generate", help="Generate one adventure without the server")
    p_gen.add_argument("prompt", nargs="?", default="",
                       help="Adventure request (default: contents of PROMPT.md)")
    p_gen.add_argument("--prompt-file", type=Path, default=Path("PROMPT.md"))
    p_gen.add_argument("--setting", type=Path, default=None, help="Setting file")
    p_gen.add_argument("--style", type=Path, default=None, help="Style file")
    p_gen.add_argument("--dirname", default="adventure",
                       help="Output folder name under OUTPUT_DIR (default: adventure)")

    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate":
        sys.exit(asyncio.run(_generate(args)))
    if args.command is None:
        args = parser.parse_args(["serve"])
    serve(args)


if __name__ == "__main__":
    main()
