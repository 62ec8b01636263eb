"""Create the database schema for development and optionally sweep idle rooms."""
from __future__ import annotations

import asyncio
import logging
import sys

from notesync.core.config import get_settings
from notesync.core.security import ContentCipher
from notesync.db.session import build_engine, build_session_factory, init_models
from notesync.services.store import SqlNoteStore

logger = logging.getLogger("bootstrap_db")


async def main(sweep: bool = False) -> None:
	settings = get_settings()
	engine = build_engine(settings)
	try:
		await init_models(engine)
		logger.info("Schema ready at %s", engine.url.render_as_string(hide_password=True))

		if sweep:
			store = SqlNoteStore(engine, build_session_factory(engine), ContentCipher(settings.encryption_key))
			removed = await store.sweep_expired()
			logger.info("Removed %d expired rooms", len(removed))
	finally:
		await engine.dispose()


if __name__ == "__main__":
	logging.basicConfig(level=logging.INFO)
	asyncio.run(main(sweep="--sweep" in sys.argv[1:]))
