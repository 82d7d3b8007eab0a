import logging
import os
import sys
import threading
import time
import webbrowser
from pathlib import Path

import uvicorn

from nebula_nav.settings import Settings

logger = logging.getLogger("nebula_nav.server")

PACKAGE_DIR = Path(__file__).resolve().parent / "nebula_nav"


def watched_files(settings: Settings) -> list[Path]:
    files = sorted(PACKAGE_DIR.glob("*.py"))
    index = settings.frontend_dir / "index.html"
    if index.exists():
        files.append(index)
    return files


def changed_files(settings: Settings, mtimes: dict[Path, float]) -> list[Path]:
    """Update ``mtimes`` in place and return files modified since the last call."""
    changed = []
    for p in watched_files(settings):
        try:
            new_mtime = p.stat().st_mtime
        except FileNotFoundError:
            # deleted between glob and stat, e.g. an editor's atomic save
            continue
        old_mtime = mtimes.get(p)
        mtimes[p] = new_mtime
        if old_mtime is not None and new_mtime != old_mtime:
            changed.append(p)
    return changed


def run_uvicorn(settings: Settings):
    """
    Run the FastAPI app via uvicorn in this process
    (called in a background thread).
    """
    config = uvicorn.Config(
        "nebula_nav.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # we are doing our own watch/restart
    )
    server = uvicorn.Server(config)
    server.run()


def open_browser_once(settings: Settings):
    url = f"http://{settings.host}:{settings.port}/"
    logger.info("Opening %s", url)
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.warning("Could not open a browser, visit %s", url)


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    t = threading.Thread(target=run_uvicorn, args=(settings,), daemon=True)
    t.start()

    # give it a moment to boot before opening browser
    time.sleep(1.0)
    open_browser_once(settings)

    mtimes: dict[Path, float] = {}
    changed_files(settings, mtimes)

    logger.info("Watching for changes. Press Ctrl+C to quit.")

    try:
        while True:
            time.sleep(1.0)
            for p in changed_files(settings, mtimes):
                logger.info("Detected change in %s", p)
                ans = input("Apply changes and restart server? [y/N]: ").strip().lower()
                if ans == "y":
                    logger.info("Restarting with new code...")
                    # restart the entire python process (works for exe too)
                    os.execv(sys.executable, [sys.executable] + sys.argv)
                else:
                    logger.info("Ignoring change. Continuing...")
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    main()
