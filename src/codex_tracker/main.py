"""Entry point for Codex Tracker."""

import argparse
import logging
import sys

from codex_tracker.config import SETTINGS_DIR

LOG_PATH = SETTINGS_DIR / "tracker.log"


def _setup_logging(verbose: bool = False) -> None:
    LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(LOG_PATH, encoding="utf-8"),
        ],
    )


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="codex-tracker", description="Codex rate-limit tracker")
    parser.add_argument("--once", action="store_true", help="poll once, print the result and exit")
    parser.add_argument("--mode", choices=["remote_api", "local_session"], help="switch and remember the poll mode")
    parser.add_argument("--model", help="model used for the API ping request")
    parser.add_argument("--set-api-key", metavar="KEY", help="store an OpenAI API key (empty string removes it)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def _print_state(state) -> None:
    print(f"Mode:   {state.mode.value}")
    print(f"Status: {state.status_text}")
    if state.error_text:
        print(f"Error:  {state.error_text}")
    snapshot = state.snapshot
    if snapshot is None:
        return
    if snapshot.is_session:
        print(f"Primary:   {snapshot.primary_used_percent}% of {snapshot.primary_window_minutes}m, resets {snapshot.primary_reset_at}")
        print(f"Secondary: {snapshot.secondary_used_percent}% of {snapshot.secondary_window_minutes}m, resets {snapshot.secondary_reset_at}")
    else:
        print(f"Requests: {snapshot.requests_remaining}/{snapshot.requests_limit} left, resets {snapshot.requests_reset_label}")
        print(f"Tokens:   {snapshot.tokens_remaining}/{snapshot.tokens_limit} left, resets {snapshot.tokens_reset_label}")
        if state.burn_percent is not None:
            print(f"Burn:     {state.burn_percent:.2f}%/h {state.burn_trend.symbol}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _setup_logging(args.verbose)
    log = logging.getLogger(__name__)

    try:
        log.info("Starting Codex Tracker...")

        from codex_tracker.config import Settings
        from codex_tracker.engine import PollEngine
        from codex_tracker.keystore import FileKeyStore

        settings = Settings.load()
        key_store = FileKeyStore()

        if args.set_api_key is not None:
            key_store.save(args.set_api_key.strip())
            log.info("API key %s", "stored" if args.set_api_key.strip() else "removed")
        if args.model:
            settings.model = args.model
        if args.mode:
            settings.poll_mode = args.mode
        settings.save()

        engine = PollEngine.from_settings(settings, key_store)
        if settings.poll_mode is None:
            settings.poll_mode = engine.mode.value
            settings.save()

        if args.once:
            engine.poll(force=True)
            _print_state(engine.state)
            return

        from codex_tracker.tray import TrayManager

        tray = TrayManager(engine, settings)
        tray.run()
    except Exception:
        log.exception("Fatal error during startup")
        sys.exit(1)


if __name__ == "__main__":
    main()
