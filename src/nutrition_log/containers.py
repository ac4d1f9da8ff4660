"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from nutrition_log.adapters.ai_gateway_client import HttpxAIGatewayClient
from nutrition_log.adapters.json_file_store import JsonFileStore
from nutrition_log.adapters.openai_parse_client import OpenAIParseClient
from nutrition_log.adapters.supabase_daily_log_repository import (
    SupabaseDailyLogRepository,
)
from nutrition_log.config import Settings
from nutrition_log.domain.profile import ModelSettings
from nutrition_log.domain.records import DailyRecord
from nutrition_log.domain.suggestions import SuggestionSet
from nutrition_log.services.daily_log import DailyLogSession
from nutrition_log.services.parsing import ParseClient, ParseService
from nutrition_log.services.patches import PatchApplier
from nutrition_log.services.signals import RefreshChannel
from nutrition_log.services.storage import KeyValueStore
from nutrition_log.services.submissions import SubmissionManager
from nutrition_log.services.suggestions import SuggestionService
from nutrition_log.services.sync import PendingPush, SyncReconciler
from nutrition_log.services.tef import TEFAnalysisCache, TEFService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    record_store: KeyValueStore[DailyRecord]
    outbox_store: KeyValueStore[PendingPush]
    suggestion_store: KeyValueStore[SuggestionSet]
    channel: RefreshChannel
    applier: PatchApplier
    reconciler: SyncReconciler
    parse_service: ParseService
    submission_manager: SubmissionManager
    tef_service: TEFService
    suggestion_service: SuggestionService
    session: DailyLogSession
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    data_dir = Path(resolved_settings.data_dir)
    record_store = JsonFileStore.create(data_dir / "records", DailyRecord)
    outbox_store = JsonFileStore.create(data_dir / "outbox", PendingPush)
    suggestion_store = JsonFileStore.create(data_dir / "suggestions", SuggestionSet)
    profile = resolved_settings.user_profile()

    gateway_client = HttpxAIGatewayClient.create(
        resolved_settings.ai_gateway_base_url, resolved_settings.ai_gateway_token
    )
    private_clients: dict[tuple[str, str, str], OpenAIParseClient] = {}

    def private_parse_client(model: ModelSettings) -> ParseClient:
        key = (model.name, model.base_url, model.api_key)
        if key not in private_clients:
            private_clients[key] = OpenAIParseClient.create(model)
        return private_clients[key]

    channel = RefreshChannel()
    applier = PatchApplier(
        store=record_store, default_activity_level=profile.activity_level
    )
    reconciler = SyncReconciler(
        applier=applier,
        remote=SupabaseDailyLogRepository(
            client=supabase_client, user_id=resolved_settings.sync_user_id
        ),
        channel=channel,
        outbox=outbox_store,
        post_delete_pull_delay_seconds=(
            resolved_settings.post_delete_pull_delay_seconds
        ),
    )
    parse_service = ParseService(
        shared_client=gateway_client,
        private_client_factory=private_parse_client,
    )
    submission_manager = SubmissionManager(
        applier=applier, reconciler=reconciler, parse_service=parse_service
    )
    tef_service = TEFService(client=gateway_client, cache=TEFAnalysisCache())
    suggestion_service = SuggestionService(
        client=gateway_client,
        records=record_store,
        store=suggestion_store,
        max_retries=resolved_settings.suggestion_max_retries,
        retry_delay_seconds=resolved_settings.suggestion_retry_delay_seconds,
        request_timeout_seconds=resolved_settings.suggestion_request_timeout_seconds,
        watchdog_seconds=resolved_settings.stream_watchdog_seconds,
    )
    session = DailyLogSession(
        applier=applier,
        reconciler=reconciler,
        submissions=submission_manager,
        channel=channel,
        profile=profile,
        ai_config=resolved_settings.ai_config(),
        tef_service=tef_service,
        auto_tef_analysis=resolved_settings.auto_tef_analysis,
        tef_debounce_seconds=resolved_settings.tef_debounce_seconds,
        refresh_delay_seconds=resolved_settings.refresh_delay_seconds,
        records_refresh_delay_seconds=(
            resolved_settings.records_refresh_delay_seconds
        ),
    )

    async def close_resources() -> None:
        await session.close()
        await reconciler.close()
        await gateway_client.close()
        for client in private_clients.values():
            await client.close()

    return AppContainer(
        settings=resolved_settings,
        record_store=record_store,
        outbox_store=outbox_store,
        suggestion_store=suggestion_store,
        channel=channel,
        applier=applier,
        reconciler=reconciler,
        parse_service=parse_service,
        submission_manager=submission_manager,
        tef_service=tef_service,
        suggestion_service=suggestion_service,
        session=session,
        close_resources=close_resources,
    )
