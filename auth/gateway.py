from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from auth.errors import (
    BadRequest,
    GatewayError,
    InvalidOrExpiredState,
    Misconfigured,
    PersistenceFailure,
)
from auth.models import TokenRecord
from auth.redirect_policy import RedirectAllowList
from auth.state_store import StateStore, state_hash
from auth.token_client import SCHWAB_AUTHORIZE_URL, TokenClient, build_authorization_url
from auth.token_store import TokenStore

logger = logging.getLogger(__name__)


class FlowState(str, enum.Enum):
    INITIATED = "initiated"
    CALLBACK_RECEIVED = "callback_received"
    EXCHANGED = "exchanged"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationUrl:
    url: str
    state: str
    redirect_uri: str

    def to_response(self) -> dict:
        return {"url": self.url, "state": self.state, "redirect_uri": self.redirect_uri}


def _flow_id(state: str | None) -> str:
    return state_hash(state) if state else "-"


class OAuthGateway:
    """Server-side half of the Schwab authorization-code flow.

    Owns the client secret (through the token client) and is the only place
    a state is validated, a redirect resolved, or a grant persisted.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirects: RedirectAllowList,
        state_store: StateStore,
        token_client: TokenClient,
        token_store: TokenStore,
        authorize_url: str = SCHWAB_AUTHORIZE_URL,
        enforce_state: bool = True,
        scope: str | None = None,
    ) -> None:
        self.client_id = client_id
        self._has_client_secret = bool(client_secret)
        self.redirects = redirects
        self.state_store = state_store
        self.token_client = token_client
        self.token_store = token_store
        self.authorize_url = authorize_url
        self.enforce_state = enforce_state
        self.scope = scope

    def _require_config(self) -> None:
        missing = []
        if not self.client_id:
            missing.append("client id")
        if not self._has_client_secret:
            missing.append("client secret")
        if missing:
            logger.error("Schwab OAuth is misconfigured; missing %s", ", ".join(missing))
            raise Misconfigured()

    def _transition(self, flow: str, state: FlowState, **fields) -> None:
        extra = " ".join(f"{key}={value}" for key, value in fields.items())
        logger.info("Flow %s -> %s %s", flow, state.value, extra)

    async def build_authorization_url(
        self,
        preferred_redirect: str | None = None,
        supplied_state: str | None = None,
    ) -> AuthorizationUrl:
        self._require_config()
        redirect_uri = self.redirects.resolve(preferred_redirect)

        if supplied_state:
            state = supplied_state
            if self.enforce_state:
                await self.state_store.remember(state, redirect_uri)
        else:
            state = await self.state_store.issue(redirect_uri)

        url = build_authorization_url(
            self.authorize_url,
            client_id=self.client_id,
            redirect_uri=redirect_uri,
            state=state,
            scope=self.scope,
        )
        self._transition(
            _flow_id(state),
            FlowState.INITIATED,
            redirect_uri=redirect_uri,
            supplied_state=bool(supplied_state),
        )
        return AuthorizationUrl(url=url, state=state, redirect_uri=redirect_uri)

    async def exchange_code(
        self,
        code: str | None,
        state: str | None = None,
        preferred_redirect: str | None = None,
    ) -> TokenRecord:
        self._require_config()
        if not code:
            raise BadRequest("Authorization code is required")

        flow = _flow_id(state)
        self._transition(flow, FlowState.CALLBACK_RECEIVED, has_state=bool(state))

        recorded_redirect = None
        if self.enforce_state:
            pending = await self.state_store.take(state) if state else None
            if pending is None:
                self._transition(flow, FlowState.FAILED, kind=InvalidOrExpiredState.kind)
                raise InvalidOrExpiredState()
            recorded_redirect = pending.redirect_uri or None

        redirect_uri = self.redirects.resolve(preferred_redirect or recorded_redirect)

        try:
            record = await self.token_client.exchange_code(code, redirect_uri)
        except GatewayError as error:
            self._transition(flow, FlowState.FAILED, kind=error.kind, retryable=error.retryable)
            raise

        self._transition(flow, FlowState.EXCHANGED, redirect_uri=redirect_uri)
        await self._persist(flow, record, state, grant_type="authorization_code")
        return record

    async def refresh(self, refresh_token: str | None) -> TokenRecord:
        self._require_config()
        if not refresh_token:
            raise BadRequest("Refresh token is required")

        flow = "refresh"
        try:
            record = await self.token_client.refresh(refresh_token)
        except GatewayError as error:
            self._transition(flow, FlowState.FAILED, kind=error.kind, retryable=error.retryable)
            raise

        self._transition(
            flow,
            FlowState.EXCHANGED,
            refresh_token_rotated=record.refresh_token not in (None, refresh_token),
        )
        await self._persist(flow, record, None, grant_type="refresh_token")
        return record

    async def _persist(
        self,
        flow: str,
        record: TokenRecord,
        state: str | None,
        *,
        grant_type: str,
    ) -> None:
        try:
            await self.token_store.save(record, state)
        except Exception as error:
            # The code or refresh token is already spent upstream.
            logger.critical(
                "Token obtained but not persisted flow=%s grant_type=%s reason=%s status=%s",
                flow,
                grant_type,
                type(error).__name__,
                getattr(error, "status_code", None),
            )
            self._transition(flow, FlowState.FAILED, kind=PersistenceFailure.kind)
            raise PersistenceFailure() from error

        self._transition(flow, FlowState.PERSISTED, grant_type=grant_type)
