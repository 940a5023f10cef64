"""
Dispatch Pipeline — LangGraph state machine for ticket push notifications.

Chains the dispatch stages into an executable graph:
    load_ticket → resolve_audience → authenticate → send → prune → done

A conditional edge short-circuits to done when nobody should be
notified, so no access token is minted for an empty audience.

Fatal errors (NotFoundError, ConfigurationError, AuthError, StoreError)
propagate out of the graph and abort the dispatch. Per-device send
failures never do: they are folded into the DispatchResult.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from langgraph.graph import END, START, StateGraph

from ticket_push.core.config import (
    ACCESS_TOKEN_CACHE_ENABLED,
    DISPATCH_DEADLINE_SECONDS,
    FCM_REQUEST_TIMEOUT,
    load_service_account_credential,
)
from ticket_push.core.errors import ConfigurationError, DispatchError, NotFoundError, StoreError
from ticket_push.db.supabase_client import get_service_client
from ticket_push.models.push import DispatchResult, ServiceAccountCredential
from ticket_push.models.tickets import NotificationType
from ticket_push.pipeline.state import DispatchStage, DispatchState
from ticket_push.services.credentials import CredentialMinter, token_cache
from ticket_push.services.fcm import MessageDispatcher
from ticket_push.services.stores import (
    SupabaseDeviceTokenStore,
    SupabaseRoleStore,
    SupabaseTicketStore,
    TicketStore,
)
from ticket_push.services.targeting import TargetResolver, resolve_audience_roles
from ticket_push.services.ticket_messages import build_ticket_notification
from ticket_push.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


class DispatchOrchestrator:
    """
    Entry point of the dispatch engine.

    All collaborators are injected; nothing here reads process globals.
    Use ``open_dispatch_orchestrator()`` for the production wiring.
    """

    def __init__(
        self,
        *,
        ticket_store: TicketStore,
        target_resolver: TargetResolver,
        credential: ServiceAccountCredential,
        minter: CredentialMinter,
        dispatcher: MessageDispatcher,
        lifecycle: TokenLifecycleManager,
        deadline_seconds: Optional[float] = DISPATCH_DEADLINE_SECONDS,
    ):
        self._tickets = ticket_store
        self._resolver = target_resolver
        self._credential = credential
        self._minter = minter
        self._dispatcher = dispatcher
        self._lifecycle = lifecycle
        self.deadline_seconds = deadline_seconds
        self.graph = self.build_graph().compile()

    # ==================================================================
    # Nodes
    # ==================================================================

    async def _load_ticket(self, state: DispatchState) -> dict[str, Any]:
        ticket = self._tickets.get_ticket(state.ticket_id)
        if ticket is None:
            raise NotFoundError(state.ticket_id, stage=DispatchStage.LOADING_TICKET.value)

        logger.info(
            "Ticket found: #%s (safety=%s)", ticket.ticket_number, ticket.is_safety_related,
        )
        return {"ticket": ticket, "stage": DispatchStage.RESOLVING_AUDIENCE}

    async def _resolve_audience(self, state: DispatchState) -> dict[str, Any]:
        roles = resolve_audience_roles(state.ticket)
        tokens = self._resolver.resolve(state.ticket, roles)
        return {
            "audience_roles": sorted(roles),
            "device_tokens": tokens,
            "stage": DispatchStage.AUTHENTICATING if tokens else DispatchStage.DONE,
        }

    async def _authenticate(self, state: DispatchState) -> dict[str, Any]:
        access_token = await self._minter.mint(self._credential)
        return {"access_token": access_token.token, "stage": DispatchStage.SENDING}

    async def _send(self, state: DispatchState) -> dict[str, Any]:
        title, body, data = build_ticket_notification(state.ticket, state.notification_type)
        logger.info(
            "Sending FCM notification to %d devices (ticket %s, type=%s)",
            len(state.device_tokens),
            state.ticket_id,
            state.notification_type.value,
        )
        result = await self._dispatcher.send(
            state.access_token,
            state.device_tokens,
            title,
            body,
            data,
            deadline=state.deadline,
        )
        return {"result": result, "stage": DispatchStage.PRUNING}

    async def _prune(self, state: DispatchState) -> dict[str, Any]:
        result = state.result
        try:
            pruned = self._lifecycle.prune(result.invalid_tokens)
        except StoreError as exc:
            # Tokens stay reported as invalid and are pruned on a later dispatch.
            logger.error("Failed to prune %d invalid tokens: %s", len(result.invalid_tokens), exc)
            pruned = 0
        return {"result": result.model_copy(update={"pruned": pruned})}

    async def _done(self, state: DispatchState) -> dict[str, Any]:
        return {"result": state.result or DispatchResult(), "stage": DispatchStage.DONE}

    # ==================================================================
    # Graph construction
    # ==================================================================

    @staticmethod
    def _check_audience(state: DispatchState) -> str:
        """Route after resolve_audience: an empty audience is a successful no-op."""
        if not state.device_tokens:
            logger.info("No push tokens found for ticket %s", state.ticket_id)
            return "empty"
        return "continue"

    def build_graph(self) -> StateGraph:
        """
        Build the (uncompiled) dispatch StateGraph.

        Node names: "load_ticket", "resolve_audience", "authenticate",
        "send", "prune", "done".
        """
        graph = StateGraph(DispatchState)

        graph.add_node("load_ticket", self._load_ticket)
        graph.add_node("resolve_audience", self._resolve_audience)
        graph.add_node("authenticate", self._authenticate)
        graph.add_node("send", self._send)
        graph.add_node("prune", self._prune)
        graph.add_node("done", self._done)

        graph.add_edge(START, "load_ticket")
        graph.add_edge("load_ticket", "resolve_audience")
        graph.add_conditional_edges(
            "resolve_audience",
            self._check_audience,
            {"continue": "authenticate", "empty": "done"},
        )
        graph.add_edge("authenticate", "send")
        graph.add_edge("send", "prune")
        graph.add_edge("prune", "done")
        graph.add_edge("done", END)

        return graph

    # ==================================================================
    # Runner
    # ==================================================================

    async def dispatch(
        self,
        ticket_id: str,
        notification_type: NotificationType | str,
    ) -> DispatchResult:
        """
        Dispatch push notifications for one ticket event.

        Returns:
            DispatchResult with attempted/success/failure counts, the
            tokens found permanently invalid, and how many were pruned.

        Raises:
            NotFoundError: The ticket does not exist.
            ConfigurationError: The service-account key is unusable.
            AuthError: The token endpoint rejected the assertion.
            StoreError: A ticket/role/token lookup failed.
        """
        deadline = None
        if self.deadline_seconds:
            deadline = time.monotonic() + self.deadline_seconds

        state = DispatchState(
            ticket_id=ticket_id,
            notification_type=NotificationType(notification_type),
            deadline=deadline,
        )
        logger.info(
            "Processing push notification for ticket %s, type: %s",
            ticket_id,
            state.notification_type.value,
        )

        try:
            output = await self.graph.ainvoke(state)
        except DispatchError as exc:
            logger.error(
                "Dispatch for ticket %s failed at stage '%s' (%s): %s",
                ticket_id,
                exc.stage,
                DispatchStage.FAILED.value,
                exc.message,
            )
            raise

        result = DispatchResult.model_validate(output["result"])
        logger.info(
            "Dispatch for ticket %s done: attempted=%d, success=%d, failure=%d, pruned=%d",
            ticket_id,
            result.attempted,
            result.success,
            result.failure,
            result.pruned,
        )
        return result


@asynccontextmanager
async def open_dispatch_orchestrator() -> AsyncIterator[DispatchOrchestrator]:
    """
    Wire a DispatchOrchestrator to Supabase, FCM config and a fresh HTTP client.

    Raises:
        ConfigurationError: If the FCM service account or Supabase is not configured.
    """
    credential = load_service_account_credential()
    try:
        db = get_service_client()
    except EnvironmentError as exc:
        raise ConfigurationError(str(exc), stage="configuration") from exc
    token_store = SupabaseDeviceTokenStore(db)

    async with httpx.AsyncClient(http2=True, timeout=FCM_REQUEST_TIMEOUT) as http_client:
        yield DispatchOrchestrator(
            ticket_store=SupabaseTicketStore(db),
            target_resolver=TargetResolver(SupabaseRoleStore(db), token_store),
            credential=credential,
            minter=CredentialMinter(
                http_client,
                cache=token_cache if ACCESS_TOKEN_CACHE_ENABLED else None,
            ),
            dispatcher=MessageDispatcher(http_client, credential.project_id),
            lifecycle=TokenLifecycleManager(token_store),
        )
