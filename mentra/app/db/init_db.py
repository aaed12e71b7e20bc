# mentra/app/db/init_db.py
import asyncio
import logging
import sys

from mentra.app.core.logging import configure_logging
from mentra.app.db.base import Base
from mentra.app.db.session import engine

# Import models so Base.metadata knows every journal table
from mentra.app import models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_models(drop: bool = False) -> None:
    try:
        async with engine.begin() as conn:
            if drop:
                # DEV ONLY: wipes every journal table, ciphertexts included
                logger.warning("Dropping all journal tables")
                await conn.run_sync(Base.metadata.drop_all)

            logger.info("Creating journal tables on %s", engine.url.render_as_string(hide_password=True))
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Journal tables created")
    except Exception as e:
        logger.error("Table creation failed: %s", e)
        raise
    finally:
        await engine.dispose()


def main(argv=None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(init_models(drop="--drop" in argv))


if __name__ == "__main__":
    main()
