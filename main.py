import argparse
import logging
import sys

from fency.config import ConfigError, load_config
from fency.generators import write_samples
from fency.server import run_bot


def main():
    parser = argparse.ArgumentParser(description="Telegram group gatekeeper with image captcha")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the bot (default)")
    serve.add_argument("--env-file", default=None, help="Extra .env file to load")

    gen = sub.add_parser("generate-captchas", help="Render sample captcha images")
    gen.add_argument("--out", default="assets", help="Assets directory, default ./assets")
    gen.add_argument("--count", type=int, default=8, help="Number of images, default 8")

    args = parser.parse_args()

    if args.command == "generate-captchas":
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        try:
            paths = write_samples(args.out, args.count)
        except ValueError as e:
            parser.error(str(e))
        for path in paths:
            print(f"Generated {path}")
        return

    try:
        config = load_config(getattr(args, "env_file", None))
    except ConfigError as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_bot(config)


if __name__ == "__main__":
    main()
