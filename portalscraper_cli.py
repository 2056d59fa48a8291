import argparse
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from portalscraper import (
    AuthenticationError,
    Credentials,
    EventScraper,
    ScrapeError,
    build_email_html,
    config_from_env,
    events_to_dataframe,
    load_config,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Scrape member-portal events")
    ap.add_argument("--cfg", type=str, default="", help="Path to config JSON (env used otherwise)")
    ap.add_argument("--email", default=os.environ.get("PORTAL_EMAIL", ""))
    ap.add_argument("--password", default=os.environ.get("PORTAL_PASSWORD", ""))
    ap.add_argument("--max", type=int, default=None, help="Return at most this many events")
    ap.add_argument("--headless", dest="headless", action="store_true", default=None)
    ap.add_argument("--headed", dest="headless", action="store_false")
    ap.add_argument("--json", type=str, default="", help="Optional path to export events JSON")
    ap.add_argument("--csv", type=str, default="", help="Optional path to export CSV")
    ap.add_argument("--html", type=str, default="", help="Optional path to write an email")
    ap.add_argument("--template", choices=["insider", "interest"], default="insider")
    ap.add_argument("--title", default=None, help="Email heading")
    return ap


def _write(path: str, text: str) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    return out


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    cfg = load_config(args.cfg) if args.cfg else config_from_env()
    if args.headless is not None:
        cfg.headless = args.headless

    if not (args.email and args.password):
        logger.error("Portal email and password are required (--email/--password or env)")
        return 2

    scraper = EventScraper(cfg, Credentials(args.email, args.password))
    try:
        events = scraper.run(args.max)
    except AuthenticationError as exc:
        logger.error("%s", exc)
        return 1
    except ScrapeError:
        logger.exception("Extraction failed")
        return 1

    dframe = events_to_dataframe(events)
    logger.info("Events: %s", len(events))
    if not dframe.empty:
        logger.info("\n%s", dframe[["date", "time", "title"]].head(10).to_string(index=False))

    if args.json:
        out = _write(args.json, json.dumps([e.to_dict() for e in events], ensure_ascii=False, indent=2))
        logger.info("Saved JSON to: %s", out)
    if args.csv:
        out = Path(args.csv)
        out.parent.mkdir(parents=True, exist_ok=True)
        dframe.to_csv(out, index=False, encoding="utf-8")
        logger.info("Saved CSV to: %s", out)
    if args.html:
        out = _write(args.html, build_email_html(events, title=args.title, template=args.template))
        logger.info("Saved %s email to: %s", args.template, out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
