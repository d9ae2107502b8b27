"""Encrypted broadcast channel between the host and its clients.

Host side (:class:`HostBroadcaster`) owns the room's session key and the
symbol order used for positional price arrays. It answers key-exchange
requests, publishes encrypted ticks and serves resync and trade requests.

Client side (:class:`ClientChannel`) starts DISABLED. Until the handshake
succeeds every price read returns ``None``. In multiplayer a failed or
timed-out handshake raises :class:`ChannelUnavailable`; there is no
unencrypted fallback. Once READY, ticks are applied strictly in sequence:
duplicates and stale messages are dropped and a gap triggers a resync
request instead of silent drift. If no reply arrives within a few ticks the
request is sent again.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable

from gamecore.catalog import AssetCategory
from gamecore.config import load_config
from gamecore.error_types import ChannelUnavailable, PayloadRejected
from gamecore.models import PlayerFinancialState, TradeOperation
from market.price_context import PriceContext
from multiplayer.crypto import (
    EncryptedPayload,
    KeyPair,
    WrappedKey,
    decrypt_payload,
    encrypt_payload,
    generate_session_key,
    hash_for_logging,
    wrap_session_key,
)
from multiplayer.messages import (
    BroadcastMessage,
    Envelope,
    EnvelopeKind,
    QuizComplete,
    ResyncPayload,
    TradeAck,
    TradeRequest,
)
from multiplayer.transport import HOST_ID, BroadcastHub, Subscription

logger = logging.getLogger(__name__)


def _channel_cfg() -> dict:
    return load_config().get("channel", {})


class ChannelStatus(str, Enum):
    DISABLED = "disabled"
    READY = "ready"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------

class HostBroadcaster:
    def __init__(self, hub: BroadcastHub, symbols: list[str]):
        self.hub = hub
        self.session_key = generate_session_key()
        self.symbols = sorted(set(symbols))
        self.seq = 0
        self.last_tick: BroadcastMessage | None = None
        self.authorized: set[str] = set()
        self.state_provider: Callable[[str], PlayerFinancialState | None] | None = None
        self.trade_handler: Callable[[TradeRequest], Awaitable[TradeAck]] | None = None
        self.quiz_handler: Callable[[str, AssetCategory], Any] | None = None
        self._inbox: Subscription = hub.subscribe(HOST_ID)
        logger.info(
            "Host channel for room %s ready (key %s, %d symbols)",
            hub.room_id, hash_for_logging(self.session_key), len(self.symbols),
        )

    def _seal(self, obj: Any) -> dict[str, Any]:
        return encrypt_payload(self.session_key, obj).model_dump()

    def _open(self, body: dict[str, Any]) -> Any:
        return decrypt_payload(
            self.session_key, EncryptedPayload.model_validate(body),
            max_age_seconds=_channel_cfg().get("max_payload_age_seconds", 30),
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def answer_key_request(self, envelope: Envelope) -> None:
        public_key = envelope.body.get("public_key", "")
        try:
            wrapped = wrap_session_key(self.session_key, public_key)
        except PayloadRejected as e:
            logger.warning("Rejected key request from %s: %s", envelope.sender, e)
            return
        self.authorized.add(envelope.sender)
        self.hub.publish(Envelope(
            kind=EnvelopeKind.KEY_RESPONSE,
            sender=HOST_ID,
            recipient=envelope.sender,
            body={"wrapped": wrapped.model_dump(), "symbols": self._seal(self.symbols)},
        ))
        logger.info("Key exchange completed for %s", envelope.sender)

    def publish_tick(
        self,
        tick: int,
        game_year: int,
        game_month: int,
        calendar_year: int,
        calendar_month: int,
        phase: str,
        prices: dict[str, Decimal | None],
        quiz_categories: list[str] | None = None,
    ) -> BroadcastMessage:
        self.seq += 1
        msg = BroadcastMessage(
            seq=self.seq,
            tick=tick,
            game_year=game_year,
            game_month=game_month,
            calendar_year=calendar_year,
            calendar_month=calendar_month,
            phase=phase,
            prices=[str(prices[s]) if prices.get(s) is not None else None for s in self.symbols],
            quiz_categories=list(quiz_categories or []),
        )
        self.last_tick = msg
        self.hub.publish(Envelope(
            kind=EnvelopeKind.TICK, sender=HOST_ID, body=self._seal(msg.model_dump(mode="json")),
        ))
        return msg

    def publish_game_end(self, leaderboard: list[dict[str, Any]]) -> None:
        self.hub.publish(Envelope(
            kind=EnvelopeKind.GAME_END, sender=HOST_ID, body=self._seal({"leaderboard": leaderboard}),
        ))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle(self, envelope: Envelope) -> None:
        if envelope.kind == EnvelopeKind.KEY_REQUEST:
            self.answer_key_request(envelope)
            return
        if envelope.sender not in self.authorized:
            logger.warning("Dropping %s from unauthorized %s", envelope.kind.value, envelope.sender)
            return
        try:
            body = self._open(envelope.body)
        except PayloadRejected as e:
            logger.warning("Dropping %s from %s: %s", envelope.kind.value, envelope.sender, e)
            return

        if envelope.kind == EnvelopeKind.RESYNC_REQUEST:
            state = self.state_provider(envelope.sender) if self.state_provider else None
            payload = ResyncPayload(tick=self.last_tick, state=state)
            self.hub.publish(Envelope(
                kind=EnvelopeKind.RESYNC, sender=HOST_ID, recipient=envelope.sender,
                body=self._seal(payload.model_dump(mode="json")),
            ))
        elif envelope.kind == EnvelopeKind.TRADE_REQUEST:
            request = TradeRequest.model_validate(body)
            if request.player != envelope.sender:
                logger.warning("%s tried to trade as %s", envelope.sender, request.player)
                ack = TradeAck(request_id=request.request_id, accepted=False, error="player mismatch")
            elif self.trade_handler is None:
                ack = TradeAck(request_id=request.request_id, accepted=False, error="host not accepting trades")
            else:
                ack = await self.trade_handler(request)
            self.hub.publish(Envelope(
                kind=EnvelopeKind.TRADE_ACK, sender=HOST_ID, recipient=envelope.sender,
                body=self._seal(ack.model_dump(mode="json")),
            ))
        elif envelope.kind == EnvelopeKind.QUIZ_COMPLETE:
            done = QuizComplete.model_validate(body)
            if done.player != envelope.sender:
                logger.warning("%s tried to complete a quiz as %s", envelope.sender, done.player)
            elif self.quiz_handler is not None:
                self.quiz_handler(done.player, done.category)
        else:
            logger.debug("Host ignoring %s", envelope.kind.value)

    async def serve(self) -> None:
        """Process inbound requests until :meth:`close`."""
        while True:
            envelope = await self._inbox.get()
            if envelope is None:
                return
            await self.handle(envelope)

    async def drain(self) -> int:
        """Handle whatever is queued right now. Returns the number handled."""
        handled = 0
        while not self._inbox.queue.empty():
            envelope = self._inbox.queue.get_nowait()
            if envelope is None:
                break
            await self.handle(envelope)
            handled += 1
        return handled

    def close(self) -> None:
        self._inbox.close()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ClientChannel:
    def __init__(
        self,
        client_id: str,
        hub: BroadcastHub,
        prices: PriceContext | None = None,
        multiplayer: bool = True,
    ):
        self.client_id = client_id
        self.hub = hub
        self.prices = prices if prices is not None else PriceContext()
        self.prices.disable()
        self.multiplayer = multiplayer
        self.status = ChannelStatus.DISABLED
        self.symbols: list[str] = []
        self.last_seq: int | None = None
        self.needs_resync = False
        self.dropped = 0
        self._gap_drops = 0
        self.on_tick: Callable[[BroadcastMessage], None] | None = None
        self.on_resync: Callable[[ResyncPayload], None] | None = None
        self.on_game_end: Callable[[dict[str, Any]], None] | None = None
        self._key: bytes | None = None
        self._sub: Subscription | None = None
        self._pending: dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    async def request_key_exchange(self, timeout: float | None = None) -> ChannelStatus:
        """Run the handshake. READY on success, FAILED otherwise.

        In multiplayer mode failure raises ChannelUnavailable instead of returning.
        """
        if timeout is None:
            timeout = _channel_cfg().get("key_exchange_timeout_seconds", 10)
        if self._sub is None:
            self._sub = self.hub.subscribe(self.client_id)
        pair = KeyPair()
        self.hub.send_to_host(Envelope(
            kind=EnvelopeKind.KEY_REQUEST, sender=self.client_id, body={"public_key": pair.public_b64},
        ))
        try:
            response = await asyncio.wait_for(self._await_key_response(), timeout=timeout)
            self._key = pair.unwrap(WrappedKey.model_validate(response.body["wrapped"]))
            self.symbols = list(self._open(response.body["symbols"]))
        except asyncio.TimeoutError:
            return self._fail(f"key exchange timed out after {timeout}s")
        except (PayloadRejected, KeyError, ValueError) as e:
            return self._fail(f"key exchange failed: {e}")

        self.status = ChannelStatus.READY
        self.prices.enable()
        logger.info("Channel READY for %s (key %s)", self.client_id, hash_for_logging(self._key))
        return self.status

    async def _await_key_response(self) -> Envelope:
        while True:
            envelope = await self._sub.get()
            if envelope is None:
                raise ValueError("subscription closed during key exchange")
            if envelope.kind == EnvelopeKind.KEY_RESPONSE:
                return envelope
            # Nothing else is readable without the key
            self.dropped += 1

    def _fail(self, reason: str) -> ChannelStatus:
        self.status = ChannelStatus.FAILED
        self._key = None
        self.prices.disable()
        logger.error("Channel FAILED for %s: %s", self.client_id, reason)
        if self.multiplayer:
            raise ChannelUnavailable(reason)
        return self.status

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.status == ChannelStatus.READY

    def require_ready(self) -> None:
        if not self.is_ready:
            raise ChannelUnavailable(f"channel is {self.status.value}")

    def get_price(self, symbol: str) -> Decimal | None:
        return self.prices.get(symbol)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _open(self, body: dict[str, Any]) -> Any:
        return decrypt_payload(
            self._key, EncryptedPayload.model_validate(body),
            max_age_seconds=_channel_cfg().get("max_payload_age_seconds", 30),
        )

    def handle(self, envelope: Envelope) -> None:
        if not self.is_ready:
            self.dropped += 1
            return
        try:
            body = self._open(envelope.body)
        except PayloadRejected as e:
            self.dropped += 1
            logger.warning("Dropping %s for %s: %s", envelope.kind.value, self.client_id, e)
            return

        if envelope.kind == EnvelopeKind.TICK:
            self._apply_tick(BroadcastMessage.model_validate(body))
        elif envelope.kind == EnvelopeKind.RESYNC:
            self._apply_resync(ResyncPayload.model_validate(body))
        elif envelope.kind == EnvelopeKind.TRADE_ACK:
            ack = TradeAck.model_validate(body)
            future = self._pending.pop(ack.request_id, None)
            if future is not None and not future.done():
                future.set_result(ack)
        elif envelope.kind == EnvelopeKind.GAME_END:
            if self.on_game_end is not None:
                self.on_game_end(body)
        else:
            logger.debug("Client %s ignoring %s", self.client_id, envelope.kind.value)

    def _apply_tick(self, msg: BroadcastMessage) -> None:
        if self.last_seq is not None and msg.seq <= self.last_seq:
            self.dropped += 1
            logger.debug("Dropping duplicate/out-of-order seq %d (last %d)", msg.seq, self.last_seq)
            return
        if self.last_seq is not None and msg.seq > self.last_seq + 1:
            self.dropped += 1
            if not self.needs_resync:
                logger.warning(
                    "Gap for %s: expected seq %d, got %d; requesting resync",
                    self.client_id, self.last_seq + 1, msg.seq,
                )
                self.needs_resync = True
                self._gap_drops = 0
                self.request_resync()
                return
            self._gap_drops += 1
            if self._gap_drops >= _channel_cfg().get("resync_retry_ticks", 3):
                logger.warning(
                    "No resync reply for %s after %d ticks; asking again", self.client_id, self._gap_drops,
                )
                self._gap_drops = 0
                self.request_resync()
            return
        self.last_seq = msg.seq
        self.prices.update(msg.price_map(self.symbols), msg.calendar_year, msg.calendar_month)
        if self.on_tick is not None:
            self.on_tick(msg)

    def _apply_resync(self, payload: ResyncPayload) -> None:
        if (
            not self.needs_resync and payload.tick is not None
            and self.last_seq is not None and payload.tick.seq < self.last_seq
        ):
            self.dropped += 1
            logger.debug("Dropping resync at seq %d (already at %d)", payload.tick.seq, self.last_seq)
            return
        if payload.tick is not None:
            self.last_seq = payload.tick.seq
            self.prices.update(
                payload.tick.price_map(self.symbols), payload.tick.calendar_year, payload.tick.calendar_month,
            )
        self.needs_resync = False
        self._gap_drops = 0
        logger.info("Resynced %s at seq %s", self.client_id, self.last_seq)
        if self.on_resync is not None:
            self.on_resync(payload)

    async def run(self) -> None:
        """Consume the subscription until it is closed."""
        if self._sub is None:
            raise ChannelUnavailable("request_key_exchange() must run first")
        while True:
            envelope = await self._sub.get()
            if envelope is None:
                return
            self.handle(envelope)

    def drain(self) -> int:
        """Handle whatever is queued right now. Returns the number handled."""
        handled = 0
        while self._sub is not None and not self._sub.queue.empty():
            envelope = self._sub.queue.get_nowait()
            if envelope is None:
                break
            self.handle(envelope)
            handled += 1
        return handled

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send(self, kind: EnvelopeKind, obj: Any) -> None:
        self.require_ready()
        self.hub.send_to_host(Envelope(
            kind=kind, sender=self.client_id, body=encrypt_payload(self._key, obj).model_dump(),
        ))

    def request_resync(self) -> None:
        self._send(EnvelopeKind.RESYNC_REQUEST, {"last_seq": self.last_seq})

    def send_quiz_complete(self, category: AssetCategory) -> None:
        done = QuizComplete(player=self.client_id, category=category)
        self._send(EnvelopeKind.QUIZ_COMPLETE, done.model_dump(mode="json"))

    async def request_trade(self, operation: TradeOperation, timeout: float = 5.0) -> TradeAck:
        """Send an operation to the host and wait for its authoritative answer."""
        request = TradeRequest(request_id=uuid.uuid4().hex, player=self.client_id, operation=operation)
        future = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = future
        self._send(EnvelopeKind.TRADE_REQUEST, request.model_dump(mode="json"))
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(request.request_id, None)

    def close(self) -> None:
        if self._sub is not None:
            self._sub.close()
            self._sub = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        self._key = None
        self.status = ChannelStatus.DISABLED
        self.prices.disable()
