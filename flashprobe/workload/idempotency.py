"""
Idempotency retry actor.

Each actor sends one purchase with a fresh idempotency key on its first
activation and replays the byte-identical request on every later activation
of the phase. The service must answer every replay the way it answered the
original:

- original confirmed: each replay is a 200 (not a 201) carrying the same
  order id;
- original rejected: each replay is rejected as well.

Anything else is a violation of the service's idempotency guarantee and is
counted and logged, never tolerated. Transport failures, 5xx answers and
unparsable bodies are probe errors: counted, not retried, never fatal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from flashprobe.domain.models import PurchaseRequest
from flashprobe.infrastructure.http_client import ApiResponse, ServiceClient
from flashprobe.metrics import Metrics
from flashprobe.utils.logging import get_logger
from flashprobe.workload.requests import OrderRequestBuilder

log = get_logger(__name__)


class ActorState(str, Enum):
    UNSTARTED = "UNSTARTED"
    # Original sent but its outcome is not known yet (transport error, 5xx).
    ORIGINAL_SENT = "ORIGINAL_SENT"
    REPLAY_EXPECT_SUCCESS = "REPLAY_EXPECT_SUCCESS"
    REPLAY_EXPECT_FAILURE = "REPLAY_EXPECT_FAILURE"


class ReplayOutcome(str, Enum):
    ORIGINAL = "ORIGINAL"
    RESOLVED = "RESOLVED"
    CORRECT = "CORRECT"
    VIOLATION = "VIOLATION"
    PROBE_ERROR = "PROBE_ERROR"


@dataclass
class ActorMemory:
    """
    Everything one idempotency actor remembers between activations.

    Owned by exactly one actor and discarded with it at phase end.
    """

    state: ActorState = ActorState.UNSTARTED
    request: Optional[PurchaseRequest] = None
    confirmed: Optional[bool] = None
    order_id: Optional[str] = None
    replays: int = 0
    violations: List[str] = field(default_factory=list)
    probe_errors: int = 0


def _created_order_id(response: ApiResponse) -> Optional[str]:
    order_id = response.field("id")
    return str(order_id) if order_id is not None else None


class IdempotencyActor:
    """
    State machine driving one actor's original request and its replays.

    Parameters
    ----------
    actor_id : int
        Run-unique actor number; becomes part of the customer id.
    builder : OrderRequestBuilder
        Builds the original request (fresh key, sampled product and quantity).
    client : ServiceClient
        Service the requests go to.
    metrics : Metrics
        Registry for replay counters and checks.
    memory : ActorMemory, optional
        Explicit state object; a fresh one is created when omitted.
    """

    def __init__(
        self,
        actor_id: int,
        builder: OrderRequestBuilder,
        client: ServiceClient,
        metrics: Metrics,
        memory: Optional[ActorMemory] = None,
    ) -> None:
        self.actor_id = actor_id
        self.builder = builder
        self.client = client
        self.metrics = metrics
        self.memory = memory if memory is not None else ActorMemory()

    @property
    def state(self) -> ActorState:
        return self.memory.state

    async def activate(self) -> ReplayOutcome:
        if self.memory.state is ActorState.UNSTARTED:
            return await self._send_original()
        if self.memory.request is None:
            raise RuntimeError(
                f"actor {self.actor_id} is in {self.memory.state.value} without a recorded request"
            )
        return await self._replay(self.memory.request)

    async def _send_original(self) -> ReplayOutcome:
        memory = self.memory
        memory.request = self.builder.build(self.actor_id)
        memory.state = ActorState.ORIGINAL_SENT
        response = await self.client.place_order(memory.request, tag="idempotency_original")
        if not self._resolve(response):
            memory.probe_errors += 1
            self.metrics.incr("probe_errors")
            log.warning(
                f"Idempotency original outcome unknown ({response.error or response.status})",
                extra={"actor_id": self.actor_id, "idempotency_key": memory.request.idempotency_key},
            )
        return ReplayOutcome.ORIGINAL

    def _resolve(self, response: ApiResponse) -> bool:
        """
        Record the original's outcome from a definitive answer.

        Returns False when the answer does not tell success from failure.
        """
        memory = self.memory
        if response.status in (200, 201):
            order_id = _created_order_id(response)
            if order_id is None:
                return False
            memory.confirmed = True
            memory.order_id = order_id
            memory.state = ActorState.REPLAY_EXPECT_SUCCESS
            return True
        if response.status is not None and 400 <= response.status < 500:
            memory.confirmed = False
            memory.state = ActorState.REPLAY_EXPECT_FAILURE
            return True
        return False

    async def _replay(self, request: PurchaseRequest) -> ReplayOutcome:
        memory = self.memory
        tag = {
            ActorState.REPLAY_EXPECT_SUCCESS: "idempotency_replay_success",
            ActorState.REPLAY_EXPECT_FAILURE: "idempotency_replay_failed",
        }.get(memory.state, "idempotency_replay_unresolved")
        response = await self.client.place_order(request, tag=tag)
        memory.replays += 1

        if response.is_server_fault:
            return self._probe_error(response)

        if memory.state is ActorState.ORIGINAL_SENT:
            if self._resolve(response):
                log.info(
                    f"Idempotency original resolved by replay as {memory.state.value}",
                    extra={"actor_id": self.actor_id, "order_id": memory.order_id},
                )
                return ReplayOutcome.RESOLVED
            return self._probe_error(response)

        if memory.state is ActorState.REPLAY_EXPECT_SUCCESS:
            if response.status == 200 and response.body is None:
                return self._probe_error(response)
            replay_id = _created_order_id(response)
            if response.status == 200 and replay_id == memory.order_id:
                return self._correct()
            if response.status == 201:
                reason = f"replay created a new order (original={memory.order_id}, replay={replay_id})"
            elif response.status == 200:
                reason = f"replay returned a different order (original={memory.order_id}, replay={replay_id})"
            else:
                reason = f"replay of a confirmed order was rejected with {response.status}"
            return self._violation(reason)

        if response.status in (200, 201):
            return self._violation(
                f"replay of a rejected request succeeded with {response.status} "
                f"(order={_created_order_id(response)})"
            )
        return self._correct()

    def _correct(self) -> ReplayOutcome:
        self.metrics.check(True)
        self.metrics.incr("idempotent_replays_correct")
        return ReplayOutcome.CORRECT

    def _violation(self, reason: str) -> ReplayOutcome:
        self.memory.violations.append(reason)
        self.metrics.check(False)
        self.metrics.incr("idempotency_violations")
        log.error(
            f"Idempotency violation: {reason}",
            extra={
                "actor_id": self.actor_id,
                "idempotency_key": self.memory.request.idempotency_key if self.memory.request else None,
            },
        )
        return ReplayOutcome.VIOLATION

    def _probe_error(self, response: ApiResponse) -> ReplayOutcome:
        self.memory.probe_errors += 1
        self.metrics.incr("probe_errors")
        log.debug(
            f"Idempotency replay probe error ({response.error or response.status})",
            extra={"actor_id": self.actor_id},
        )
        return ReplayOutcome.PROBE_ERROR


__all__ = ["ActorMemory", "ActorState", "IdempotencyActor", "ReplayOutcome"]
