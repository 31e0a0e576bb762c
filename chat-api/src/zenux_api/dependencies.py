"""FastAPI dependency providers.

Routers receive their collaborators (relay, token verifier, store) through
``Depends`` so tests swap them with ``app.dependency_overrides``.
"""
from zenux_api.config import get_settings
from zenux_api.db.engine import get_session_factory
from zenux_api.services.auth import SupabaseTokenVerifier, TokenVerifier
from zenux_api.services.chat_store import ChatStore
from zenux_api.services.http_client import get_client
from zenux_api.services.relay import ChatRelay


async def get_chat_relay() -> ChatRelay:
    return ChatRelay(await get_client(), get_settings())


async def get_token_verifier() -> TokenVerifier:
    settings = get_settings()
    return SupabaseTokenVerifier(
        await get_client(),
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


def get_chat_store() -> ChatStore:
    return ChatStore(get_session_factory())
