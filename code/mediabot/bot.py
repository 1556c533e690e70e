# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import aiohttp
import discord
from dotenv import load_dotenv

from common.config import BACKEND_PHOTOS, CURRENT_VERSION, Config
from common.logctx import SyncPrefixFilter
from common.stores import DestinationCache, MonitoredChannelStore, SyncLedger
from mediabot.destinations import DestinationResolver, RemoteStore
from mediabot.media import MediaTask, extract_media
from mediabot.sync import Destination, MediaUploader, SyncPipeline, UploadOrchestrator

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")
load_dotenv(Path.cwd() / ".env")

logger = logging.getLogger("mediabot")


def configure_logging(level_name: str) -> None:
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-5s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.setLevel(level)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    ch.setLevel(level)
    root.addHandler(ch)

    for lib in (
        "discord",
        "discord.client",
        "discord.gateway",
        "discord.state",
        "discord.http",
        "googleapiclient.discovery",
        "googleapiclient.discovery_cache",
    ):
        logging.getLogger(lib).setLevel(logging.WARNING)
    logging.getLogger("discord.client").setLevel(logging.ERROR)

    logger.addFilter(SyncPrefixFilter())
    logger.setLevel(level)


class MediaBot:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config(logger=logger)

        intents = discord.Intents.default()
        intents.message_content = True
        self.bot = discord.Bot(intents=intents)
        self.bot.app = self

        self.monitored = MonitoredChannelStore(self.config.MONITORED_CHANNELS_FILE)
        self.ledger = SyncLedger(self.config.SYNCED_MESSAGES_FILE)
        self.album_cache = DestinationCache(self.config.ALBUM_CACHE_FILE)
        for store in (self.monitored, self.ledger, self.album_cache):
            store.load()

        self.session: Optional[aiohttp.ClientSession] = None
        self.store: Optional[RemoteStore] = None
        self.resolver: Optional[DestinationResolver] = None
        self.uploader: Optional[MediaUploader] = None
        self.pipeline: Optional[SyncPipeline] = None
        self._shutting_down = False

        self.bot.event(self.on_ready)
        self.bot.event(self.on_message)
        self.bot.load_extension("mediabot.commands")

    async def _build_store(self) -> RemoteStore:
        cfg = self.config
        if cfg.STORAGE_BACKEND == BACKEND_PHOTOS:
            from mediabot.photos import GooglePhotosStore, load_credentials

            creds = await asyncio.to_thread(
                load_credentials,
                cfg.GOOGLE_OAUTH_CREDENTIALS_PATH,
                cfg.GOOGLE_TOKEN_PATH,
                cfg.GOOGLE_AUTH_CODE,
            )
            return GooglePhotosStore(self.session, creds)

        from mediabot.drive import GoogleDriveStore

        return await asyncio.to_thread(
            GoogleDriveStore.from_service_account,
            cfg.GOOGLE_CREDENTIALS_PATH,
            cfg.GOOGLE_DRIVE_FOLDER_ID,
        )

    def wire(self, session: aiohttp.ClientSession, store: RemoteStore) -> None:
        """Connect the HTTP session and remote store to the upload pipeline."""
        self.session = session
        self.store = store
        self.resolver = DestinationResolver(store, self.album_cache)
        self.uploader = MediaUploader(session, store, self.resolver)
        orchestrator = UploadOrchestrator(
            self.uploader, self.ledger, self.config.upload_policy()
        )
        self.pipeline = SyncPipeline(
            self.ledger,
            self.resolver,
            orchestrator,
            page_delay=self.config.HISTORY_PAGE_DELAY_SECONDS,
        )

    async def start(self) -> None:
        session = aiohttp.ClientSession()
        self.session = session
        store = await self._build_store()
        self.wire(session, store)
        logger.info(
            "[☁️] Storage backend: %s (%s)",
            store.name,
            self.config.upload_policy(),
        )
        await self.bot.start(self.config.DISCORD_TOKEN)

    async def on_ready(self):
        logger.info(
            "[🤖] Logged in as %s, watching %d guild(s)",
            self.bot.user,
            self.monitored.guild_count(),
        )

    async def on_message(self, message: discord.Message):
        logger.debug("Message received: %s from %s", message.id, message.author)

        if message.author.bot:
            return
        if not message.guild:
            return
        if not self.monitored.is_monitored(message.guild.id, message.channel.id):
            return

        urls = extract_media(message)
        if not urls:
            logger.debug("No media found in message %s", message.id)
            return
        if self.uploader is None:
            logger.warning("[⚠️] Storage not ready, skipping message %s", message.id)
            return

        logger.info("[🖼️] Found %d media item(s) in message %s", len(urls), message.id)
        channel_name = getattr(message.channel, "name", None) or str(message.channel.id)

        try:
            dest = Destination(
                name=channel_name,
                container_id=await self.resolver.resolve(channel_name),
            )
            for idx, url in enumerate(urls):
                logger.info("[📥] Uploading media %d/%d of %s", idx + 1, len(urls), message.id)
                link = await self.uploader.upload(
                    MediaTask(message=message, url=url, index=idx), dest
                )
                logger.info("[☁️] Successfully uploaded: %s", link)
        except Exception:
            logger.exception("[⛔] Error processing media of message %s", message.id)
            with contextlib.suppress(discord.HTTPException):
                await message.add_reaction("❌")
            return

        with contextlib.suppress(discord.HTTPException):
            await message.add_reaction("✅")

        self.ledger.mark_synced(message.channel.id, message.id)
        self.ledger.persist()

    async def _shutdown(self):
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutting down...")

        self.ledger.persist()

        try:
            if self.store is not None:
                await self.store.close()
        except Exception:
            logger.debug("[shutdown] storage close failed", exc_info=True)

        try:
            if self.session and not self.session.closed:
                await self.session.close()
        except Exception:
            logger.debug("[shutdown] aiohttp session close failed", exc_info=True)

        try:
            if not self.bot.is_closed():
                await self.bot.close()
        except Exception:
            logger.debug("[shutdown] bot close failed", exc_info=True)

        logger.info("Shutdown complete.")

    def run(self):
        """
        Starts the bot and manages the event loop.
        """
        logger.info("[✨] Starting Mediacord %s", CURRENT_VERSION)
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig, lambda: asyncio.ensure_future(self._shutdown())
                )
            except (NotImplementedError, RuntimeError):
                break

        try:
            loop.run_until_complete(self.start())
        finally:
            loop.run_until_complete(self._shutdown())
            pending = asyncio.all_tasks(loop=loop)
            for task in pending:
                task.cancel()
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()


def main() -> int:
    config = Config(logger=logger)
    configure_logging(config.LOG_LEVEL)

    if not config.DISCORD_TOKEN:
        logger.error("[⛔] DISCORD_TOKEN is not set")
        return 1

    try:
        MediaBot(config).run()
    except Exception:
        logger.exception("[⛔] Failed to start bot")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
