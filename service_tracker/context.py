"""Process-wide collaborators, built once at startup and passed explicitly."""

from dataclasses import dataclass

from sqlalchemy import Engine

from .config import Settings
from .infrastructure.database.database import create_database_engine
from .infrastructure.telegram import TelegramGateway


@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    gateway: TelegramGateway

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        return cls(
            settings=settings,
            engine=create_database_engine(settings.database_url, settings.debug),
            gateway=TelegramGateway(
                bot_token=settings.telegram_bot_token,
                api_base_url=settings.telegram_api_base_url,
                timeout=settings.telegram_timeout_seconds,
            ),
        )

    async def aclose(self) -> None:
        await self.gateway.aclose()
        self.engine.dispose()
